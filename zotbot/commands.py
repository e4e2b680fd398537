"""Command handler for zotbot.

このモジュールは、パース済みのコマンドをカウンタストアに適用し、
チャットへ返す応答テキストを組み立てることを担当します。

"""

import logging

from zotbot.parser import Decrement, Increment, Nothing, ParsedLine
from zotbot.storage import CounterStore

logger = logging.getLogger(__name__)


class CommandHandler:
    """zotコマンドのハンドラ.

    責務:
    - Increment/Decrement: ストアを更新し、新しい値を返答
    - Query: 現在の値を返答
    - Nothing: 返答しない
    """

    def __init__(self, store: CounterStore) -> None:
        """ハンドラを初期化.

        Args:
            store: CounterStoreのインスタンス
        """
        self._store = store

    def execute(self, command: ParsedLine) -> str | None:
        """コマンドを実行し、応答テキスト（応答しない場合はNone）を返す"""
        if isinstance(command, Nothing):
            return None

        try:
            if isinstance(command, Increment):
                value = self._store.increment(command.key)
            elif isinstance(command, Decrement):
                value = self._store.decrement(command.key)
            else:
                value = self._store.value(command.key)
        except OverflowError as e:
            logger.warning(f"Ignoring {command!r}: {e}")
            return None

        return self.format_reply(command.key, value)

    @staticmethod
    def format_reply(key: str, value: int) -> str:
        return f"{key} == {value}"
