"""Tests for reference and tag extraction from chat input."""

from __future__ import annotations

from pathlib import Path

import pytest

from ollama_chat.documents.references import Reference, directory_structure, scan


class TestScan:
    """Test scanning of user input."""

    def test_tags_are_not_references(self) -> None:
        result = scan("What does #recipes say about #baking_time?")
        assert result.tags == {"recipes", "baking_time"}
        assert result.references == []

    def test_hash_inside_word_is_no_tag(self) -> None:
        assert scan("issue abc#123 and C# code").tags == set()

    def test_url_keeps_fragment_and_is_no_tag(self) -> None:
        result = scan("read https://example.com/page#intro please")
        assert result.references == [Reference("url", "https://example.com/page#intro")]
        assert result.tags == set()

    def test_urls_and_files_in_order(self, tmp_path: Path) -> None:
        result = scan(f"compare https://a.example/x with {tmp_path}/notes.txt and file:///etc/hosts")
        assert [r.kind for r in result.references] == ["url", "file", "file"]
        assert result.references[1].source == f"{tmp_path}/notes.txt"
        assert result.references[1].check_exist is True
        assert result.references[2].source == "file:///etc/hosts"

    def test_quoted_path_with_spaces(self) -> None:
        result = scan('summarize "./my notes.txt" now')
        assert result.references == [Reference("file", "./my notes.txt", check_exist=True)]

    def test_escaped_spaces(self) -> None:
        result = scan(r"open ~/my\ notes.txt")
        assert result.references[0].source == "~/my notes.txt"

    def test_directory(self, tmp_path: Path) -> None:
        result = scan(f"look at {tmp_path}")
        assert result.references == [Reference("directory", str(tmp_path))]

    def test_tags_and_references_together(self) -> None:
        result = scan("#news https://a.example/feed.rss")
        assert result.tags == {"news"}
        assert [r.source for r in result.references] == ["https://a.example/feed.rss"]


class TestDirectoryStructure:
    def test_nested_listing_skips_hidden(self, tmp_path: Path) -> None:
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.txt").write_text("b")
        (tmp_path / "a.txt").write_text("a")
        (tmp_path / ".secret").write_text("x")

        structure = directory_structure(tmp_path)
        assert [e["name"] for e in structure] == ["a.txt", "sub"]
        assert structure[1]["type"] == "directory"
        assert structure[1]["children"][0]["name"] == "b.txt"

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            directory_structure(tmp_path / "nope")
