"""
证据保留模块

- FrameRingBuffer: 按时间索引缓存最近的原图采样帧。确认发生在观察到回落之后，
  需要回溯取出真正的峰值帧截图。
- TopKSnapshotKeeper: 每个视频最多保留 K 张置信度最高的截图。
- SnapshotRetention: 串起标注、写文件、写记录与淘汰，并在视频结束时做硬性 Top-K 清理。
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple
import numpy as np
import logging

from models.data_models import BoundingBox, EventType, Snapshot
from models.interfaces import IAnalysisRepository, ISnapshotAnnotator
from models.exceptions import PersistenceError
from storage.snapshot_store import SnapshotStore


DEFAULT_TOP_K = 5
RING_KEEP_MS = 5200


@dataclass
class BufferedFrame:
    """环形缓冲中的一帧"""
    time_ms: int
    frame_index: int
    frame: np.ndarray


class FrameRingBuffer:
    """时间索引的帧环形缓冲"""

    def __init__(self, capacity: int = 24):
        self.capacity = max(1, capacity)
        self._items: Deque[BufferedFrame] = deque(maxlen=self.capacity)

    @classmethod
    def for_sample_rate(cls, sample_rate: float) -> 'FrameRingBuffer':
        """容量 = max(24, 5 * 实际采样率)"""
        return cls(capacity=max(24, int(round(5 * sample_rate))))

    def add(self, time_ms: int, frame_index: int, frame: np.ndarray) -> None:
        self._items.append(BufferedFrame(time_ms, frame_index, frame.copy()))

    def nearest(self, time_ms: int) -> Optional[BufferedFrame]:
        """时间最接近的帧，距离相同取较早者"""
        best, best_dt = None, None
        for item in self._items:
            dt = abs(item.time_ms - time_ms)
            if best_dt is None or dt < best_dt:
                best, best_dt = item, dt
        return best

    def trim_by_time(self, keep_ms: int = RING_KEEP_MS) -> None:
        if not self._items:
            return
        newest = self._items[-1].time_ms
        while self._items and newest - self._items[0].time_ms > keep_ms:
            self._items.popleft()

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


@dataclass
class KeepDecision:
    """Top-K 判定结果；evict 为需要淘汰的截图（未满时为 None）"""
    keep: bool
    evict: Optional[Snapshot] = None


class TopKSnapshotKeeper:
    """单视频 Top-K 截图保留策略"""

    def __init__(self, k: int = DEFAULT_TOP_K):
        self.k = max(1, k)
        self._items: List[Snapshot] = []

    def seed(self, snapshots: List[Snapshot]) -> None:
        """用已持久化的截图初始化（续跑时保持 Top-K 状态）"""
        ordered = sorted(snapshots, key=lambda s: -s.confidence)
        self._items = list(ordered[:self.k])

    @property
    def items(self) -> List[Snapshot]:
        return sorted(self._items, key=lambda s: -s.confidence)

    @property
    def min_confidence(self) -> Optional[float]:
        if not self._items:
            return None
        return min(s.confidence for s in self._items)

    def _min_item(self) -> Snapshot:
        # 置信度相同时淘汰较早加入的
        return min(self._items, key=lambda s: s.confidence)

    def decide(self, confidence: float) -> KeepDecision:
        """未满 K 张时无条件保留；已满时必须严格大于当前最小值"""
        if len(self._items) < self.k:
            return KeepDecision(keep=True)
        lowest = self._min_item()
        if confidence > lowest.confidence:
            return KeepDecision(keep=True, evict=lowest)
        return KeepDecision(keep=False)

    def commit_kept(self, decision: KeepDecision, snapshot: Snapshot) -> None:
        if not decision.keep:
            return
        if decision.evict is not None:
            self._items = [s for s in self._items if s is not decision.evict]
        self._items.append(snapshot)

    def __len__(self) -> int:
        return len(self._items)


class SnapshotRetention:
    """截图保留流程（每个视频一个实例）"""

    def __init__(self, repository: IAnalysisRepository, store: SnapshotStore,
                 annotator: ISnapshotAnnotator, k: int = DEFAULT_TOP_K):
        self.repository = repository
        self.store = store
        self.annotator = annotator
        self.keeper = TopKSnapshotKeeper(k)
        self.logger = logging.getLogger(__name__)
        self.next_seq = 1
        self._failed_deletes: List[Snapshot] = []

    def start_file(self, file_id: int) -> None:
        existing = self.repository.list_snapshots_by_confidence(file_id)
        self.keeper.seed(existing)
        self.next_seq = max([s.seq_no for s in existing] + [0]) + 1
        self._failed_deletes = []

    def retain(self, job_no: str, file_id: int, event_id: int, frame: np.ndarray,
               event_type: EventType, time_sec: float, frame_index: int,
               confidence: float, bbox: Optional[BoundingBox]) -> Optional[Snapshot]:
        """按 Top-K 策略决定是否保存截图

        Returns:
            Optional[Snapshot]: 保存的截图记录，未被保留时返回 None

        Raises:
            PersistenceError: 截图文件或记录写入失败
        """
        decision = self.keeper.decide(confidence)
        if not decision.keep:
            self.logger.debug(f"截图未进入 Top-{self.keeper.k}: conf={confidence:.2f}")
            return None

        annotated = self.annotator.annotate_snapshot(frame, event_type, time_sec, confidence, bbox)
        path = self.store.build_path(job_no, file_id, frame_index, event_type.label, time_sec)
        self.store.write(path, annotated)

        snapshot = Snapshot(
            file_id=file_id,
            event_id=event_id,
            image_path=path,
            time_sec=time_sec,
            frame_index=frame_index,
            image_width=int(annotated.shape[1]),
            image_height=int(annotated.shape[0]),
            confidence=confidence,
            seq_no=self.next_seq
        )
        try:
            snapshot = self.repository.add_snapshot(snapshot)
        except Exception:
            self.store.delete(path)
            raise
        self.next_seq += 1

        if decision.evict is not None:
            self._delete(decision.evict)
        self.keeper.commit_kept(decision, snapshot)
        return snapshot

    def _delete(self, snapshot: Snapshot) -> bool:
        """删除截图文件与记录，失败时记入重试列表"""
        try:
            self.repository.delete_snapshot(snapshot.id)
        except PersistenceError as e:
            self.logger.warning(f"删除截图记录失败: {snapshot.id} - {e}")
            self._failed_deletes.append(snapshot)
            return False
        if not self.store.delete(snapshot.image_path):
            self._failed_deletes.append(snapshot)
            return False
        return True

    def enforce_limit(self, file_id: int) -> int:
        """视频结束时的硬性 Top-K 清理

        重新按置信度降序查询全部截图，删除第 K 张之后的记录与文件，
        并重试此前失败的删除。

        Returns:
            int: 删除的截图数量
        """
        retry, self._failed_deletes = self._failed_deletes, []
        for snapshot in retry:
            self._delete(snapshot)

        snapshots = self.repository.list_snapshots_by_confidence(file_id)
        removed = 0
        for snapshot in snapshots[self.keeper.k:]:
            if self._delete(snapshot):
                removed += 1

        if removed:
            self.logger.info(f"视频 {file_id} 硬性 Top-{self.keeper.k} 清理，删除 {removed} 张截图")
        self.keeper.seed(self.repository.list_snapshots_by_confidence(file_id))
        return removed

    def pending_deletes(self) -> List[Tuple[int, str]]:
        return [(s.id, s.image_path) for s in self._failed_deletes]
