"""Periodic flush task for the counter store.

このモジュールは、カウンタストアを定期的にフラッシュする
バックグラウンドタスクを担当します。最初のフラッシュは起動直後に行います。
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class PeriodicFlusher:
    """ストアの定期フラッシュ.

    責務:
    - 起動直後に1回、その後interval秒ごとにstore.flush()を呼ぶ

    ライフサイクル:
    1. __init__(store, interval): インスタンスを作成
    2. start(): バックグラウンドタスクを開始
    3. stop(): タスクを停止

    フラッシュの失敗はストア側でログに出るため、タスクは止まらない。
    """

    def __init__(self, store, interval: float) -> None:
        """フラッシャを初期化.

        Args:
            store: CounterStoreのインスタンス
            interval: フラッシュ間隔（秒）
        """
        self._store = store
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """フラッシュタスクを開始.

        Raises:
            RuntimeError: 既に実行中の場合
        """
        if self._running:
            raise RuntimeError("Periodic flusher is already running")

        logger.info(f"Starting periodic flush every {self._interval}s")
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """フラッシュタスクを停止し、完了を待つ。実行中でなければ何もしない"""
        if not self._running:
            return

        self._running = False

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.debug("Periodic flush task stopped")

        self._task = None

    async def _run(self) -> None:
        """内部: フラッシュのメインループ.

        次の実行時刻は開始時刻からinterval刻みで決めるため、
        フラッシュにかかった時間で周期がずれない。
        """
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        try:
            while self._running:
                self._store.flush()
                self.ticks += 1
                next_tick += self._interval
                # 遅れた分のtickは飛ばす
                now = loop.time()
                while next_tick <= now:
                    next_tick += self._interval
                await asyncio.sleep(next_tick - now)
        except asyncio.CancelledError:
            logger.debug("Periodic flush task cancelled")
            raise
