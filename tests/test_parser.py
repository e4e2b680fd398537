"""Tests for the zot command parser."""

import pytest

from zotbot.parser import Decrement, Increment, Nothing, Query, parse_line


class TestBasicForms:
    """前置・後置形式のテスト."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("++foo", Increment("foo")),
            ("foo++", Increment("foo")),
            ("--foo", Decrement("foo")),
            ("foo--", Decrement("foo")),
            ("?foo", Query("foo")),
        ],
    )
    def test_operators(self, text: str, expected) -> None:
        assert parse_line(text) == expected

    def test_postfix_query_is_not_recognized(self) -> None:
        assert parse_line("foo?") == Nothing()

    @pytest.mark.parametrize("text", ["", "Hello, world!", "foo ++ bar", "c++ is a language"])
    def test_plain_text_is_nothing(self, text: str) -> None:
        assert parse_line(text) == Nothing()

    def test_whitespace_and_semicolons_are_allowed(self) -> None:
        assert parse_line("  ++  foo  ") == Increment("foo")
        assert parse_line("  foo  ++  ") == Increment("foo")
        assert parse_line("  --  foo  ") == Decrement("foo")
        assert parse_line("  foo  --  ") == Decrement("foo")
        assert parse_line("  ?  foo  ") == Query("foo")
        assert parse_line("foo++;") == Increment("foo")
        assert parse_line("--foo ; ;") == Decrement("foo")


class TestIdentifiers:
    """識別子の区切り文字のテスト."""

    @pytest.mark.parametrize("ident", ["Foo::Bar", "Foo->Bar", "Foo.Bar", "a_1::b2->c3.d4"])
    def test_separators_are_preserved_verbatim(self, ident: str) -> None:
        assert parse_line(f"++{ident}") == Increment(ident)
        assert parse_line(f"{ident}++") == Increment(ident)

    @pytest.mark.parametrize(
        "text",
        [
            "++Foo..Bar",
            "++Foo:Bar",
            "++Foo:::Bar",
            "++Foo :: Bar",
            "++Foo: :Bar",
            "+ +Foo::Bar",
            "+Foo::Bar",
            "+-Foo::Bar",
            "++1foo",
            "Foo..Bar++",
            "Foo:Bar++",
            "Foo:::Bar++",
            "Foo :: Bar++",
            "Foo: :Bar++",
            "Foo::Bar+ +",
            "Foo::Bar+",
            "Foo::Bar+-",
        ],
    )
    def test_malformed_identifiers_are_rejected(self, text: str) -> None:
        assert parse_line(text) == Nothing()


class TestComments:
    """コメント除去のテスト."""

    @pytest.mark.parametrize(
        "text",
        ["// ++empty", "// --empty", "// ?empty", "/* ++empty */", "/* --empty */", "/* ?empty */"],
    )
    def test_commented_out_commands_are_nothing(self, text: str) -> None:
        assert parse_line(text) == Nothing()

    def test_comments_around_operator(self) -> None:
        assert parse_line(" /* junk */ ++ /* junk */ foo /* junk */ // junk") == Increment("foo")
        assert parse_line(" /* junk */ foo /* junk */ ++ /* junk */ // junk") == Increment("foo")
        assert parse_line(" /* junk */ -- /* junk */ foo /* junk */ // junk") == Decrement("foo")
        assert parse_line(" /* junk */ foo /* junk */ -- /* junk */ // junk") == Decrement("foo")
        assert parse_line(" /* junk */ ? /* junk */ foo /* junk */ // junk") == Query("foo")

    def test_comments_without_spaces(self) -> None:
        assert parse_line("/*x*/++/*x*/foo::bar/*x*/ //x") == Increment("foo::bar")
        assert parse_line("/*junk*/++/*junk*/foo::bar/*junk*///junk") == Increment("foo::bar")

    def test_comments_inside_tokens_are_removed_first(self) -> None:
        assert parse_line("+/* junk */+foo:/* junk */:bar // junk") == Increment("foo::bar")
