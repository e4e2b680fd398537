"""Durable counter store for zotbot.

このモジュールは、カウンタ（zot）の正規化キー→整数値の管理、
ファイルからの読み込み、およびdirtyフラグによるフラッシュを担当します。

"""

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# 64bit符号付き整数の範囲
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_SEPARATORS = re.compile(r"::|->")
_INTEGER = re.compile(r"[+-]?[0-9]+")


def normalize_key(key: str) -> str:
    """キーを正規化する.

    スコープ区切り `::` と `->` を `.` に置き換え、全体を小文字にする。
    `Foo::Bar`、`foo.bar`、`FOO->BAR` はすべて `foo.bar` になる。
    """
    return _SEPARATORS.sub(".", key).lower()


def _parse_record(path: Path, text: str) -> tuple[str, int] | None:
    """ファイルの1行を (key, value) にパースする。不正な行はNone."""
    key, sep, raw_value = text.partition(":")
    if not sep:
        logger.warning(f"Invalid line format in {path}: {text!r}")
        return None

    if not _INTEGER.fullmatch(raw_value):
        logger.warning(f"Invalid value in {path}: {text!r}")
        return None

    value = int(raw_value)
    if not INT64_MIN <= value <= INT64_MAX:
        logger.warning(f"Value out of range in {path}: {text!r}")
        return None

    return key, value


class CounterStore:
    """ファイルに永続化されるカウンタストア.

    責務:
    - 正規化キー→整数値のマッピング
    - dirtyフラグの管理（ストア全体で1つ）
    - フラッシュ時のファイル全体の書き換え

    ライフサイクル:
    1. load(path): ファイルから読み込んでインスタンスを作成
    2. increment()/decrement()/value(): カウンタの操作
    3. flush(): dirtyなら書き出す
    4. close() / with文の終了: 最後のフラッシュ
    """

    def __init__(self, path: str | os.PathLike[str], values: dict[str, int] | None = None) -> None:
        """ストアを初期化.

        Args:
            path: 永続化先のファイルパス
            values: 初期値（正規化済みキー）
        """
        self._path = Path(path)
        self._values: dict[str, int] = dict(values) if values else {}
        self._dirty = False

    @classmethod
    def load(cls, path: str | os.PathLike[str]) -> "CounterStore":
        """ファイルからストアを読み込む.

        ファイルが存在しない場合は空のストアを作成する。
        不正な行はログに出してスキップし、残りの読み込みを続ける。
        ディスク上のキーは読み込み時に再正規化し、
        衝突したエントリは合算してdirtyにする（次のフラッシュで正規形に書き直す）。

        Args:
            path: 読み込むファイルのパス

        Returns:
            読み込んだCounterStore
        """
        store = cls(path)

        try:
            text = store._path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.info(f"{store._path} not found, initializing new counter store")
            return store
        except OSError as e:
            logger.error(f"Could not read {store._path}, initializing new counter store: {e}")
            return store

        for line in text.splitlines():
            if not line:
                continue

            record = _parse_record(store._path, line)
            if record is None:
                continue

            raw_key, value = record
            key = normalize_key(raw_key)
            if key != raw_key:
                store._dirty = True

            if key in store._values:
                logger.warning(f"Merging duplicate key {key!r} in {store._path}")
                store._values[key] += value
                store._dirty = True
            else:
                store._values[key] = value

        logger.info(f"Loaded {len(store._values)} counters from {store._path}")
        return store

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dirty(self) -> bool:
        return self._dirty

    def __len__(self) -> int:
        return len(self._values)

    def __enter__(self) -> "CounterStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def items(self) -> list[tuple[str, int]]:
        """全カウンタのスナップショットを取得する"""
        return list(self._values.items())

    def value(self, key: str) -> int:
        """カウンタの値を取得。存在しない場合は0"""
        return self._values.get(normalize_key(key), 0)

    def increment(self, key: str) -> int:
        return self._adjust(key, 1)

    def decrement(self, key: str) -> int:
        return self._adjust(key, -1)

    def _adjust(self, key: str, delta: int) -> int:
        """内部: カウンタにdeltaを加えて新しい値を返す.

        Raises:
            OverflowError: 64bit範囲を超える場合（値は変更しない）
        """
        key = normalize_key(key)
        new_value = self._values.get(key, 0) + delta
        if not INT64_MIN <= new_value <= INT64_MAX:
            raise OverflowError(f"counter {key!r} out of range")

        self._values[key] = new_value
        self._dirty = True
        return new_value

    def flush(self) -> bool:
        """dirtyならファイル全体を書き直す.

        一時ファイル `<path>.tmp` に書き出してから os.replace() で置き換えるため、
        途中で失敗しても既存のファイルは壊れない。

        Returns:
            True: 書き出しに成功した
            False: dirtyでなかった、または書き出しに失敗した（dirtyのまま）
        """
        if not self._dirty:
            return False

        tmp_path = self._path.with_name(self._path.name + ".tmp")
        content = "".join(f"{key}:{value}\n" for key, value in self._values.items())

        try:
            with open(tmp_path, "w", encoding="utf-8") as stream:
                stream.write(content)
                stream.flush()
                os.fsync(stream.fileno())
            os.replace(tmp_path, self._path)
        except OSError as e:
            logger.error(f"Could not write {self._path}: {e}")
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as cleanup_error:
                logger.error(f"Could not remove {tmp_path}: {cleanup_error}")
            return False

        self._dirty = False
        logger.debug(f"Flushed {len(self._values)} counters to {self._path}")
        return True

    def close(self) -> None:
        """最後のフラッシュを行う"""
        self.flush()
