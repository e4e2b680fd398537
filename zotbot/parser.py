"""Command parser for zot messages.

チャットメッセージ本文から `++foo` / `foo--` / `?foo` 形式のコマンドを取り出す。
入力テキスト全体がコマンドとして一致した場合のみ認識する（部分一致はしない）。
"""

import re
from dataclasses import dataclass

_COMMENTS = re.compile(r"/\*(?:[^/]|/[^*])*\*/|//.*")

_IDENT = r"[A-Za-z_][A-Za-z0-9_]*(?:(?:\.|->|::)[A-Za-z_][A-Za-z0-9_]*)*"

_PREFIX_OP = re.compile(rf"\s*(\+\+|--|\?)\s*({_IDENT})[\s;]*")
_POSTFIX_OP = re.compile(rf"\s*({_IDENT})\s*(\+\+|--)[\s;]*")


@dataclass(frozen=True)
class Nothing:
    """コマンドではない行"""


@dataclass(frozen=True)
class Increment:
    """`++key` / `key++`"""
    key: str


@dataclass(frozen=True)
class Decrement:
    """`--key` / `key--`"""
    key: str


@dataclass(frozen=True)
class Query:
    """`?key`"""
    key: str


ParsedLine = Nothing | Increment | Decrement | Query


def _parsed_from(op: str, ident: str) -> ParsedLine:
    if op == "++":
        return Increment(ident)
    elif op == "--":
        return Decrement(ident)
    elif op == "?":
        return Query(ident)
    return Nothing()


def parse_line(line: str) -> ParsedLine:
    """テキストをパースしてParsedLineを返す.

    1. `/* ... */` と `// ...` のコメントを取り除く
    2. 前置形式（`++foo`, `--foo`, `?foo`）を試す
    3. 後置形式（`foo++`, `foo--`）を試す。後置の `?` は認識しない
    4. どちらにも一致しなければNothing

    キーは一致したテキストのまま返す（正規化はストアの責任）。

    例:
        >>> parse_line("/* x */ ++ foo::bar; // x")
        Increment(key='foo::bar')
        >>> parse_line("foo?")
        Nothing()
    """
    clean = _COMMENTS.sub("", line)

    match = _PREFIX_OP.fullmatch(clean)
    if match:
        return _parsed_from(match.group(1), match.group(2))

    match = _POSTFIX_OP.fullmatch(clean)
    if match:
        return _parsed_from(match.group(2), match.group(1))

    return Nothing()
