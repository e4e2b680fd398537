"""Keepalive state machine for the IRC session.

このモジュールは、PING/PONGによる死活監視のサブステートマシンを担当します。
時刻は呼び出し側から渡す（本番はイベントループの時計、テストでは任意の値）。

状態遷移:
    RESET --arm()--> WAITING --on_deadline()--> PING_PENDING
    PING_PENDING --on_deadline()--> (RECONNECT)
    WAITING / PING_PENDING --pong_received()--> RESET
"""

import enum
import logging

logger = logging.getLogger(__name__)


class KeepaliveState(enum.Enum):
    RESET = "reset"
    WAITING = "waiting"
    PING_PENDING = "ping_pending"


class KeepaliveAction(enum.Enum):
    """期限切れ時に呼び出し側が行うべき動作"""

    SEND_PING = "send_ping"
    RECONNECT = "reconnect"


class KeepaliveMonitor:
    """接続の死活監視.

    責務:
    - アイドル時間の期限管理（WAITING）
    - PING送信後の応答待ち期限管理（PING_PENDING）
    - PONG受信時のリセット

    主要メソッド:
    - arm(now): 新しい期限を設定してWAITINGへ
    - on_deadline(now): 期限切れ時の処理を決める
    - pong_received(): RESETへ（次のループでarm()される）
    """

    def __init__(self, interval: float, ping_timeout: float) -> None:
        """モニタを初期化.

        Args:
            interval: PINGを送るまでのアイドル時間（秒）
            ping_timeout: PING送信後にPONGを待つ時間（秒）
        """
        self._interval = interval
        self._ping_timeout = ping_timeout
        self._state = KeepaliveState.RESET
        self._deadline: float | None = None

    @property
    def state(self) -> KeepaliveState:
        return self._state

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def reset(self) -> None:
        self._state = KeepaliveState.RESET
        self._deadline = None

    def arm(self, now: float) -> None:
        """アイドルタイマを開始する"""
        self._deadline = now + self._interval
        self._state = KeepaliveState.WAITING

    def remaining(self, now: float) -> float:
        """期限までの残り秒数（負にはならない）"""
        if self._deadline is None:
            raise RuntimeError("Keepalive deadline requested before arm()")
        return max(0.0, self._deadline - now)

    def on_deadline(self, now: float) -> KeepaliveAction:
        """期限切れ時の処理.

        Returns:
            SEND_PING: PINGを送信し、応答待ちに移った
            RECONNECT: 応答待ちの期限も切れた（接続が死んでいる）

        Raises:
            RuntimeError: RESET状態で呼ばれた場合（ロジックエラー）
        """
        if self._state is KeepaliveState.WAITING:
            self._state = KeepaliveState.PING_PENDING
            self._deadline = now + self._ping_timeout
            return KeepaliveAction.SEND_PING

        if self._state is KeepaliveState.PING_PENDING:
            logger.debug("No PONG received before the deadline")
            return KeepaliveAction.RECONNECT

        raise RuntimeError("Keepalive deadline fired while in RESET state")

    def pong_received(self) -> None:
        self._state = KeepaliveState.RESET
