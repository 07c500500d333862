"""Tests for .env parsing and rewriting."""

import pytest

from kfg.envfile import format_value, parse, remove_env_key, update_env_content


class TestParse:
    def test_basic_pairs(self):
        assert parse("A=1\nB = two\n") == {"A": "1", "B": "two"}

    def test_comments_and_blank_lines_ignored(self):
        content = "# header\n\nA=1 # trailing\n  # indented comment\n"
        assert parse(content) == {"A": "1"}

    def test_quoted_values(self):
        content = "A=\"hello world\"\nB='single # not comment'\nC=\"say \\\"hi\\\"\"\n"
        assert parse(content) == {
            "A": "hello world",
            "B": "single # not comment",
            "C": 'say "hi"',
        }

    def test_invalid_lines_skipped(self):
        assert parse("not a pair\n1BAD=x\nGOOD=y") == {"GOOD": "y"}


class TestFormatValue:
    def test_lists_are_json(self):
        assert format_value(["a", "b"]) == '["a", "b"]'

    def test_booleans(self):
        assert format_value(True) == "true"
        assert format_value(False) == "false"

    def test_quotes_when_needed(self):
        assert format_value("plain") == "plain"
        assert format_value("has space") == '"has space"'
        assert format_value("a#b") == '"a#b"'

    def test_backslashes_are_escaped(self):
        assert format_value("C:\\new dir") == r'"C:\\new dir"'

    @pytest.mark.parametrize("value", ["C:\\new dir", "tab\\t and \"quote\"", "line\none two"])
    def test_quoted_values_read_back_unchanged(self, value):
        assert parse(f"A={format_value(value)}\n") == {"A": value}


class TestUpdateAndRemove:
    def test_update_existing_key_preserves_other_lines(self):
        content = "# keep\nA=1\nB=2\n"
        assert update_env_content(content, "A", 5) == "# keep\nA=5\nB=2\n"

    def test_append_new_key_with_description(self):
        result = update_env_content("A=1\n", "B", 2, "the b value")
        assert result == "A=1\n\n# the b value\nB=2\n"

    def test_description_not_duplicated(self):
        content = "# existing\nA=1\n"
        assert update_env_content(content, "A", 2, "new text") == "# existing\nA=2\n"

    def test_update_empty_content(self):
        assert update_env_content("", "A", "x") == "A=x\n"

    def test_remove_key_and_its_comment(self):
        content = "X=0\n# about a\nA=1\nB=2\n"
        assert remove_env_key(content, "A") == "X=0\nB=2\n"

    def test_remove_last_key_leaves_empty(self):
        assert remove_env_key("A=1\n", "A") == ""
