"""zotbot entry point.

このモジュールは、zotbotのエントリポイントです。
`python -m zotbot HOST:PORT NICK [CHANNEL ...]` または `zotbot ...` で起動します。
"""

import asyncio
import logging
import platform
import signal
import sys

import click

from zotbot.client import IRCClient
from zotbot.config import DEFAULT_QUIT_MESSAGE, DEFAULT_STORE_PATH, ClientConfig, parse_address
from zotbot.storage import CounterStore

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """ログ設定を初期化."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _validate_address(ctx: click.Context, param: click.Parameter, value: str) -> str:
    try:
        parse_address(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    return value


async def serve(client: IRCClient) -> None:
    """SIGINT/SIGTERMでshutdown()が呼ばれるようにしてクライアントを実行する"""
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM) if platform.system() != "Windows" else ()

    for sig in signals:
        loop.add_signal_handler(sig, client.shutdown)
    try:
        await client.run()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)


@click.command()
@click.argument("address", callback=_validate_address)
@click.argument("nick")
@click.argument("channels", nargs=-1)
@click.option("--db", "db_path", default=DEFAULT_STORE_PATH, show_default=True, help="Counter store file.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
@click.option("--quit-message", default=DEFAULT_QUIT_MESSAGE, show_default=True)
def main(address: str, nick: str, channels: tuple[str, ...], db_path: str, log_level: str, quit_message: str) -> None:
    """Connect to the IRC server at ADDRESS (host:port) as NICK and count zots in CHANNELS."""
    setup_logging(log_level)

    config = ClientConfig(quit_message=quit_message)

    async def _run() -> None:
        client = IRCClient(store, address, nick, config=config)
        for channel in channels:
            client.join(channel)
        await serve(client)

    with CounterStore.load(db_path) as store:
        logger.info("Starting zotbot...")
        try:
            asyncio.run(_run())
        except KeyboardInterrupt:
            logger.info("Received shutdown signal")
        finally:
            logger.info("Shutting down zotbot...")


if __name__ == "__main__":
    main()
