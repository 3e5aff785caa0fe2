"""ペイン出力のアクティビティ追跡。

ペインごとに出力ハッシュ・最終変化時刻・行数を保持し、
前回サンプルとの差分から出力の増加量を求める。
"""

import hashlib
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime


@dataclass(frozen=True)
class PaneActivitySample:
    """1 ペインの最新アクティビティサンプル。"""

    pane_id: str
    """ペイン識別子"""

    content_hash: str
    """出力内容のハッシュ"""

    last_change: datetime
    """出力が最後に変化した時刻"""

    line_count: int
    """空でない行数"""

    sampled_at: datetime
    """最後にサンプリングした時刻"""

    last_delta: int = 0
    """直近サンプルでの行増加量"""


class ReadWriteLock:
    """複数リーダー・単一ライターのロック。"""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        """読み取りロックを取得する。"""
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        """書き込みロックを取得する。"""
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _count_lines(content: str) -> int:
    return sum(1 for line in content.splitlines() if line.strip())


def _hash_content(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


class ActivityTracker:
    """ペインごとのアクティビティ状態を保持するストア。

    プロセス内で共有して使う。テストでは個別インスタンスを生成する。
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        """ActivityTrackerを初期化する。

        Args:
            clock: 現在時刻を返す関数
        """
        self._clock = clock
        self._lock = ReadWriteLock()
        self._samples: dict[str, PaneActivitySample] = {}

    def update(self, pane_id: str, content: str) -> tuple[datetime, int]:
        """最新の出力でサンプルを更新する。

        - 初回は現在時刻と全行数を返す（0 にはしない）
        - 行数が減った場合（クリア・スクロールアウト）は全行数を差分とする
        - 行数が同じでも内容が変わった場合は差分を 1 とする
        - 内容が変わったときだけ最終変化時刻を更新する

        Args:
            pane_id: ペイン識別子
            content: キャプチャした出力

        Returns:
            (最終変化時刻, 行増加量) のタプル
        """
        now = self._clock()
        current_lines = _count_lines(content)
        content_hash = _hash_content(content)

        with self._lock.write():
            previous = self._samples.get(pane_id)
            if previous is None:
                sample = PaneActivitySample(
                    pane_id=pane_id,
                    content_hash=content_hash,
                    last_change=now,
                    line_count=current_lines,
                    sampled_at=now,
                    last_delta=current_lines,
                )
                self._samples[pane_id] = sample
                return sample.last_change, current_lines

            changed = previous.content_hash != content_hash
            delta = current_lines - previous.line_count
            if delta < 0:
                delta = current_lines
            elif delta == 0 and changed:
                delta = 1

            sample = replace(
                previous,
                content_hash=content_hash,
                last_change=now if changed else previous.last_change,
                line_count=current_lines,
                sampled_at=now,
                last_delta=delta,
            )
            self._samples[pane_id] = sample
            return sample.last_change, delta

    def get(self, pane_id: str) -> PaneActivitySample | None:
        """ペインの最新サンプルを返す。"""
        with self._lock.read():
            return self._samples.get(pane_id)

    def seconds_since_change(self, pane_id: str, now: datetime | None = None) -> float | None:
        """最後に出力が変化してからの経過秒数を返す。"""
        sample = self.get(pane_id)
        if sample is None:
            return None
        now = now or self._clock()
        return max(0.0, (now - sample.last_change).total_seconds())

    def velocity(self, previous: PaneActivitySample | None, current: PaneActivitySample) -> float:
        """2 つのサンプル間の行増加速度（行/秒）を返す。

        出力が変化していない場合は 0。
        """
        if previous is None or previous.content_hash == current.content_hash:
            return 0.0
        elapsed = (current.sampled_at - previous.sampled_at).total_seconds()
        if elapsed <= 0:
            return float(current.last_delta)
        return current.last_delta / elapsed

    def now(self) -> datetime:
        """ストアの時計で現在時刻を返す。"""
        return self._clock()

    def forget(self, pane_id: str) -> None:
        """ペインのサンプルを削除する。"""
        with self._lock.write():
            self._samples.pop(pane_id, None)

    def clear(self) -> None:
        """全サンプルを削除する。"""
        with self._lock.write():
            self._samples.clear()

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._samples)
