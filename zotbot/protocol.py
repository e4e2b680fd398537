"""IRC line encoder and tokenizer.

このモジュールは、IRCプロトコルの行単位のエンコード（Python文字列→バイト列）と
受信バイト列の行分割・トークン分割を担当します。

扱うのは接続に必要な最小限のコマンドのみ:
NICK / USER / JOIN / PING / PONG / PRIVMSG / QUIT
"""

import re

CRLF = b"\r\n"

_FORBIDDEN = re.compile(r"[\r\n\0]")
_WHITESPACE = " \t\n\r\x0b\x0c"


class IRCProtocol:
    """IRCプロトコルのエンコーダ.

    責務:
    - 送信する各コマンドをCRLF終端のUTF-8バイト列にエンコード
    - 引数にCR/LF/NULが含まれる場合はIRCProtocolErrorを送出
    """

    def _encode_line(self, *parts: str) -> bytes:
        """各パートを検証して1行にエンコードする"""
        for part in parts:
            if _FORBIDDEN.search(part):
                raise IRCProtocolError(f"Illegal character in {part!r}")
        return " ".join(parts).encode("utf-8") + CRLF

    def encode_nick(self, identity: str) -> bytes:
        return self._encode_line("NICK", identity)

    def encode_user(self, identity: str) -> bytes:
        """USERコマンドをエンコードする（username/realnameともにidentity）"""
        return self._encode_line("USER", identity, ".", ".", f":{identity}")

    def encode_join(self, channel: str) -> bytes:
        return self._encode_line("JOIN", f"#{channel}")

    def encode_ping(self, token: str) -> bytes:
        return self._encode_line("PING", f":{token}")

    def encode_pong(self, target: str) -> bytes:
        """PONGをエンコードする。targetはPINGで受け取ったトークンをそのまま返す"""
        return self._encode_line("PONG", target)

    def encode_privmsg(self, target: str, text: str) -> bytes:
        return self._encode_line("PRIVMSG", target, f":{text}")

    def encode_quit(self, text: str) -> bytes:
        return self._encode_line("QUIT", f":{text}")


def tokenize(line: str) -> list[str]:
    """受信行をトークンに分割する.

    ASCII空白で分割する。ただし `:` で始まるトークンは行の残りを
    そのまま（`:` を含めて）1つのトークンとして吸収する。
    先頭トークン（送信元プレフィックス `:nick!user@host`）はこの規則の対象外。

    例:
        >>> tokenize(":alice!a@host PRIVMSG #chan :foo ++")
        [':alice!a@host', 'PRIVMSG', '#chan', ':foo ++']
        >>> tokenize("PING :irc.example.net")
        ['PING', ':irc.example.net']
    """
    tokens: list[str] = []
    pos = 0
    length = len(line)

    while pos < length:
        # 空白をスキップ
        while pos < length and line[pos] in _WHITESPACE:
            pos += 1
        if pos >= length:
            break

        if tokens and line[pos] == ":":
            tokens.append(line[pos:])
            break

        end = pos
        while end < length and line[end] not in _WHITESPACE:
            end += 1
        tokens.append(line[pos:end])
        pos = end

    return tokens


def nick_from_prefix(prefix: str) -> str:
    """送信元プレフィックス `:nick!user@host` からnickを取り出す"""
    return prefix.lstrip(":").split("!", 1)[0]


class LineBuffer:
    """受信バイト列を行に分割するバッファ.

    改行で終わっていない断片は次のfeed()まで保持する。
    デコードは寛容に行い（不正なUTF-8は置換文字になる）、
    行末の空白（CRを含む）は取り除く。
    """

    def __init__(self) -> None:
        self._pending = bytearray()

    @property
    def pending(self) -> bytes:
        return bytes(self._pending)

    def feed(self, data: bytes) -> list[str]:
        """データを追加し、完成した行のリストを返す"""
        self._pending.extend(data)

        lines = []
        while True:
            index = self._pending.find(b"\n")
            if index < 0:
                break
            raw = bytes(self._pending[:index])
            del self._pending[: index + 1]
            lines.append(raw.decode("utf-8", errors="replace").rstrip())

        return lines


class IRCProtocolError(Exception):
    """IRCプロトコルのエンコードエラー.

    例:
        raise IRCProtocolError("Illegal character in 'foo\\r\\nQUIT'")
    """

    pass
