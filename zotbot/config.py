"""Configuration defaults for zotbot."""

from dataclasses import dataclass

# 接続まわりの既定値（秒）
RECONNECT_DELAY_SECONDS = 60.0
CONNECT_TIMEOUT_SECONDS = 60.0
KEEPALIVE_INTERVAL_SECONDS = 5 * 60.0
PING_TIMEOUT_SECONDS = 60.0

# ストアの定期フラッシュ間隔（秒）
FLUSH_INTERVAL_SECONDS = 15 * 60.0

READ_CHUNK_SIZE = 4096

DEFAULT_STORE_PATH = "zot.db"
DEFAULT_QUIT_MESSAGE = "Goodbye"


@dataclass(frozen=True)
class ClientConfig:
    """IRCClientの設定.

    Attributes:
        reconnect_delay: 再接続の試行前に待つ時間
        connect_timeout: 1回の接続試行のタイムアウト
        keepalive_interval: PINGを送るまでのアイドル時間
        ping_timeout: PING送信後にPONGを待つ時間
        flush_interval: ストアの定期フラッシュ間隔
        read_size: 1回のreadで読む最大バイト数
        quit_message: 終了時のQUITメッセージ
    """

    reconnect_delay: float = RECONNECT_DELAY_SECONDS
    connect_timeout: float = CONNECT_TIMEOUT_SECONDS
    keepalive_interval: float = KEEPALIVE_INTERVAL_SECONDS
    ping_timeout: float = PING_TIMEOUT_SECONDS
    flush_interval: float = FLUSH_INTERVAL_SECONDS
    read_size: int = READ_CHUNK_SIZE
    quit_message: str = DEFAULT_QUIT_MESSAGE


def parse_address(address: str) -> tuple[str, int]:
    """`host:port` 形式のアドレスをパースする.

    IPv6アドレスは `[::1]:6667` のように角括弧で囲む。

    Raises:
        ValueError: ポートがない、または数値でない場合
    """
    host, sep, port_text = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Expected host:port, got {address!r}")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]

    if not port_text.isdigit() or not 0 < int(port_text) < 65536:
        raise ValueError(f"Invalid port in {address!r}")

    return host, int(port_text)
