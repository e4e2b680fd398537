"""IRC session client for zotbot.

このモジュールは、IRCサーバとのセッション（接続・再接続・死活監視・終了）と、
受信した行のディスパッチを担当します。

イベントループは1本のasyncioループで以下を競合させる:
- ソケットの読み込み
- keepaliveの期限
- シャットダウンシグナル
ストアの定期フラッシュは同じループ上のPeriodicFlusherタスクが行う。
"""

import asyncio
import enum
import logging
from asyncio import StreamReader, StreamWriter

from zotbot.commands import CommandHandler
from zotbot.config import ClientConfig, parse_address
from zotbot.flusher import PeriodicFlusher
from zotbot.keepalive import KeepaliveAction, KeepaliveMonitor, KeepaliveState
from zotbot.parser import parse_line
from zotbot.protocol import IRCProtocol, IRCProtocolError, LineBuffer, nick_from_prefix, tokenize
from zotbot.storage import CounterStore

logger = logging.getLogger(__name__)

CHANNEL_PREFIXES = ("#", "&")


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"


class Connection:
    """1回分の接続.

    reader/writerと未完成行のバッファをまとめて保持する。
    再接続のたびに新しいインスタンスに丸ごと置き換える。
    """

    def __init__(self, reader: StreamReader, writer: StreamWriter, read_size: int) -> None:
        self.reader = reader
        self.writer = writer
        self.buffer = LineBuffer()
        self._read_size = read_size

    async def read(self) -> bytes:
        return await self.reader.read(self._read_size)

    async def send(self, data: bytes) -> bool:
        """データを送信する。失敗はログに出すだけで、次のreadで切断として検出される"""
        try:
            self.writer.write(data)
            await self.writer.drain()
        except OSError as e:
            logger.warning(f"Write failed: {e}")
            return False
        return True

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing connection: {e}")


class IRCClient:
    """IRCセッションのクライアント.

    責務:
    - 接続・識別（NICK/USER）・チャンネル参加
    - 切断の検出と再接続
    - PING/PONGによる死活監視
    - PRIVMSGのコマンドをストアに適用して返答
    - 終了時のQUITと最後のフラッシュ

    ライフサイクル:
    1. __init__(): インスタンスを作成
    2. join(): 参加するチャンネルを追加（run()の前のみ）
    3. run(): shutdown()が呼ばれるまで実行
    """

    def __init__(
        self,
        store: CounterStore,
        address: str,
        identity: str,
        config: ClientConfig | None = None,
        connector=None,
    ) -> None:
        """クライアントを初期化.

        Args:
            store: CounterStoreのインスタンス
            address: 接続先（`host:port`）
            identity: NICK/USERで名乗る名前
            config: 接続設定（Noneの場合は既定値）
            connector: (host, port)から(reader, writer)を返すコルーチン関数
                （Noneの場合はasyncio.open_connection）

        Raises:
            ValueError: addressが不正な場合
        """
        self.host, self.port = parse_address(address)
        self.identity = identity
        self.channels: list[str] = []
        self.state = SessionState.DISCONNECTED

        self._config = config if config is not None else ClientConfig()
        self._connector = connector if connector is not None else asyncio.open_connection
        self._store = store
        self._handler = CommandHandler(store)
        self._protocol = IRCProtocol()
        self._flusher = PeriodicFlusher(store, self._config.flush_interval)
        self._keepalive = KeepaliveMonitor(self._config.keepalive_interval, self._config.ping_timeout)
        self._conn: Connection | None = None
        self._shutdown = asyncio.Event()
        self._started = False

    @property
    def keepalive(self) -> KeepaliveMonitor:
        return self._keepalive

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def join(self, channel: str) -> None:
        """参加するチャンネルを追加する.

        名前はそのまま保持し、`JOIN #<channel>` として送る。

        Raises:
            RuntimeError: run()開始後に呼ばれた場合
        """
        if self._started:
            raise RuntimeError("Channels can only be added before run()")
        self.channels.append(channel)

    def shutdown(self) -> None:
        """シャットダウンを要求する。シグナルハンドラから呼んでよい"""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
            self._shutdown.set()

    async def run(self) -> None:
        """セッションを実行する.

        shutdown()が呼ばれるまで戻らない。終了時は必ずフラッシャを止め、
        QUITを送って接続を閉じ、ストアをフラッシュする。
        """
        if self._started:
            raise RuntimeError("IRCClient.run() can only be called once")
        self._started = True

        await self._flusher.start()
        try:
            await self._connect()
            await self._event_loop()
        except ShutdownRequested:
            logger.info("Shutdown requested while connecting")
        finally:
            await self._flusher.stop()
            await self._disconnect(farewell=True)
            self.state = SessionState.SHUTTING_DOWN
            self._store.flush()
            logger.info("Session finished")

    async def _until_shutdown(self, aw):
        """awとシャットダウンを競合させる.

        Returns:
            awの結果（awの例外はそのまま送出）

        Raises:
            ShutdownRequested: 先にシャットダウンが要求された場合（awはキャンセル）
        """
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (task, waiter):
                if not pending.done():
                    pending.cancel()

        if task not in done:
            await asyncio.gather(task, return_exceptions=True)
            raise ShutdownRequested()
        return task.result()

    async def _connect(self) -> None:
        """接続シーケンス.

        最初の試行はすぐに行い、失敗した場合はreconnect_delay秒待ってから再試行する。
        成功するかシャットダウンされるまで無限に繰り返す。

        Raises:
            ShutdownRequested: 待機中または接続試行中にシャットダウンされた場合
        """
        self.state = SessionState.CONNECTING
        attempt = 0

        while True:
            if attempt > 0:
                logger.info(f"Retrying connection in {self._config.reconnect_delay}s")
                await self._until_shutdown(asyncio.sleep(self._config.reconnect_delay))

            attempt += 1
            logger.info(f"Connecting to {self.host}:{self.port} (attempt {attempt})")
            try:
                reader, writer = await self._until_shutdown(
                    asyncio.wait_for(
                        self._connector(self.host, self.port),
                        timeout=self._config.connect_timeout,
                    )
                )
            except asyncio.TimeoutError:
                logger.warning(f"Connection to {self.host}:{self.port} timed out")
                continue
            except OSError as e:
                logger.warning(f"Could not connect to {self.host}:{self.port}: {e}")
                continue
            break

        self._conn = Connection(reader, writer, self._config.read_size)
        self.state = SessionState.CONNECTED
        logger.info(f"Connected to {self.host}:{self.port}")

        await self._send(self._protocol.encode_nick(self.identity))
        await self._send(self._protocol.encode_user(self.identity))
        for channel in self.channels:
            logger.info(f"Joining #{channel}")
            await self._send(self._protocol.encode_join(channel))

        self._keepalive.reset()

    async def _reconnect(self) -> None:
        """現在の接続を捨てて接続シーケンスをやり直す"""
        await self._disconnect(farewell=False)
        await self._connect()

    async def _disconnect(self, farewell: bool) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return

        if farewell:
            await conn.send(self._protocol.encode_quit(self._config.quit_message))
        await conn.close()
        self.state = SessionState.DISCONNECTED
        logger.info(f"Disconnected from {self.host}:{self.port}")

    async def _send(self, data: bytes) -> None:
        if self._conn is None:
            logger.warning(f"Not connected, dropping {data!r}")
            return
        logger.debug(f">> {data.decode('utf-8', errors='replace').rstrip()}")
        await self._conn.send(data)

    async def _event_loop(self) -> None:
        """接続中のメインループ"""
        loop = asyncio.get_running_loop()
        waiter = asyncio.ensure_future(self._shutdown.wait())
        read_task: asyncio.Future[bytes] | None = None

        try:
            while True:
                now = loop.time()
                if self._keepalive.state is KeepaliveState.RESET:
                    self._keepalive.arm(now)

                if read_task is None:
                    read_task = asyncio.ensure_future(self._conn.read())

                done, _ = await asyncio.wait(
                    {read_task, waiter},
                    timeout=self._keepalive.remaining(now),
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if waiter in done:
                    break

                if read_task in done:
                    finished, read_task = read_task, None
                    await self._on_read(finished)
                    continue

                # keepaliveの期限切れ
                action = self._keepalive.on_deadline(loop.time())
                if action is KeepaliveAction.SEND_PING:
                    await self._send(self._protocol.encode_ping(self.host))
                else:
                    logger.warning(f"No PONG from {self.host} within {self._config.ping_timeout}s, reconnecting")
                    read_task.cancel()
                    await asyncio.gather(read_task, return_exceptions=True)
                    read_task = None
                    await self._reconnect()
        finally:
            waiter.cancel()
            if read_task is not None:
                read_task.cancel()
                await asyncio.gather(read_task, return_exceptions=True)

    async def _on_read(self, finished: "asyncio.Future[bytes]") -> None:
        try:
            data = finished.result()
        except OSError as e:
            logger.warning(f"Read from {self.host} failed: {e}")
            data = b""

        if not data:
            logger.warning(f"Connection to {self.host}:{self.port} lost, reconnecting")
            await self._reconnect()
            return

        for line in self._conn.buffer.feed(data):
            try:
                await self._dispatch(line)
            except IRCProtocolError as e:
                logger.warning(f"Dropping reply to {line!r}: {e}")

    async def _dispatch(self, line: str) -> None:
        """受信した1行を処理する"""
        logger.debug(f"<< {line}")
        tokens = tokenize(line)
        if not tokens:
            return

        if tokens[0].upper() == "PING":
            if len(tokens) > 1:
                await self._send(self._protocol.encode_pong(tokens[1]))
            return

        if len(tokens) < 2:
            return

        command = tokens[1].upper()
        if command == "PONG":
            self._keepalive.pong_received()
        elif command == "PRIVMSG" and len(tokens) > 3:
            await self._on_privmsg(tokens[0], tokens[2], tokens[3])

    async def _on_privmsg(self, prefix: str, target: str, body: str) -> None:
        text = body[1:] if body.startswith(":") else body
        reply = self._handler.execute(parse_line(text))
        if reply is None:
            return

        # チャンネル宛てならそのチャンネルへ、自分宛てなら送信者へ返す
        reply_to = target if target.startswith(CHANNEL_PREFIXES) else nick_from_prefix(prefix)
        logger.info(f"{reply_to}: {reply}")
        await self._send(self._protocol.encode_privmsg(reply_to, reply))


class ShutdownRequested(Exception):
    """接続シーケンス中にシャットダウンが要求されたことを表す.

    エラーではなく、run()を終了させるための制御フロー用の例外。
    """

    pass
