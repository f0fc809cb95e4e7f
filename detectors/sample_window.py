"""
滑动窗口模块

按时间有序保存最近的采样点，供脉冲确认回看。
"""

from collections import deque
from typing import Deque, Iterator, List

from models.data_models import SamplePoint


class SampleWindow:
    """以时间跨度为界的采样点窗口"""

    DEFAULT_MAX_MS = 4500
    KEEP_AFTER_CLOSE_MS = 1500

    def __init__(self, max_ms: int = DEFAULT_MAX_MS):
        self.max_ms = max_ms
        self._samples: Deque[SamplePoint] = deque()

    def append(self, sample: SamplePoint) -> None:
        self._samples.append(sample)
        self.trim(self.max_ms)

    def trim(self, keep_ms: int) -> None:
        """丢弃比最新样本早 keep_ms 以上的样本"""
        if not self._samples:
            return
        newest = max(s.time_ms for s in self._samples)
        while self._samples and newest - self._samples[0].time_ms > keep_ms:
            self._samples.popleft()

    def trim_to_recent(self, keep_ms: int = KEEP_AFTER_CLOSE_MS) -> None:
        self.trim(keep_ms)

    def samples(self) -> List[SamplePoint]:
        """按时间排序的样本快照"""
        return sorted(self._samples, key=lambda s: s.time_ms)

    def clear(self) -> None:
        self._samples.clear()

    @property
    def span_ms(self) -> int:
        if not self._samples:
            return 0
        return self._samples[-1].time_ms - self._samples[0].time_ms

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[SamplePoint]:
        return iter(self.samples())
