"""
证据保留单元测试

测试帧环形缓冲、Top-K 截图保留策略，以及截图写入/淘汰/硬性清理流程。
"""

import os
import shutil
import tempfile
import unittest
from unittest.mock import Mock, patch

import numpy as np

from models.data_models import EventType, Snapshot
from models.exceptions import PersistenceError
from processors.evidence import (
    FrameRingBuffer, TopKSnapshotKeeper, SnapshotRetention, RING_KEEP_MS
)
from storage.memory_repository import InMemoryAnalysisRepository
from storage.snapshot_store import SnapshotStore


def make_frame(value: int = 50) -> np.ndarray:
    return np.full((48, 64, 3), value, dtype=np.uint8)


class TestFrameRingBuffer(unittest.TestCase):
    """帧环形缓冲测试类"""

    def test_capacity_from_sample_rate(self):
        self.assertEqual(FrameRingBuffer.for_sample_rate(2).capacity, 24)
        self.assertEqual(FrameRingBuffer.for_sample_rate(10).capacity, 50)

    def test_nearest_frame(self):
        ring = FrameRingBuffer(capacity=10)
        for i, t in enumerate([0, 100, 200, 300]):
            ring.add(t, i, make_frame(i))

        self.assertEqual(ring.nearest(180).frame_index, 2)
        # 距离相同取较早者
        self.assertEqual(ring.nearest(150).frame_index, 1)
        self.assertIsNone(FrameRingBuffer().nearest(0))

    def test_frames_are_copied(self):
        ring = FrameRingBuffer()
        frame = make_frame(10)
        ring.add(0, 0, frame)
        frame[:] = 255
        self.assertEqual(int(ring.nearest(0).frame[0, 0, 0]), 10)

    def test_capacity_bound(self):
        ring = FrameRingBuffer(capacity=3)
        for i in range(5):
            ring.add(i * 100, i, make_frame())
        self.assertEqual(len(ring), 3)
        self.assertEqual(ring.nearest(0).frame_index, 2)

    def test_trim_by_time(self):
        ring = FrameRingBuffer(capacity=100)
        for i in range(0, 70):
            ring.add(i * 100, i, make_frame())
        ring.trim_by_time()
        self.assertEqual(ring.nearest(0).time_ms, 6900 - RING_KEEP_MS)

        ring.clear()
        self.assertEqual(len(ring), 0)


class TestTopKSnapshotKeeper(unittest.TestCase):
    """Top-K 保留策略测试类"""

    def fill(self, keeper, confidences):
        for i, conf in enumerate(confidences):
            decision = keeper.decide(conf)
            keeper.commit_kept(decision, Snapshot(id=i + 1, confidence=conf))

    def test_keeps_unconditionally_until_full(self):
        keeper = TopKSnapshotKeeper(k=5)
        self.fill(keeper, [0.1, 0.2, 0.3])
        self.assertEqual(len(keeper), 3)
        self.assertTrue(keeper.decide(0.01).keep)

    def test_higher_confidence_evicts_minimum(self):
        keeper = TopKSnapshotKeeper(k=5)
        self.fill(keeper, [0.9, 0.8, 0.7, 0.6, 0.5])

        decision = keeper.decide(0.95)
        self.assertTrue(decision.keep)
        self.assertEqual(decision.evict.confidence, 0.5)
        keeper.commit_kept(decision, Snapshot(id=6, confidence=0.95))

        self.assertEqual([s.confidence for s in keeper.items], [0.95, 0.9, 0.8, 0.7, 0.6])
        self.assertEqual(keeper.min_confidence, 0.6)

    def test_lower_or_equal_confidence_is_rejected(self):
        keeper = TopKSnapshotKeeper(k=5)
        self.fill(keeper, [0.9, 0.8, 0.7, 0.6, 0.5])
        self.assertFalse(keeper.decide(0.4).keep)
        self.assertFalse(keeper.decide(0.5).keep)

    def test_seed_from_existing(self):
        keeper = TopKSnapshotKeeper(k=2)
        keeper.seed([Snapshot(id=1, confidence=0.3), Snapshot(id=2, confidence=0.9),
                     Snapshot(id=3, confidence=0.6)])
        self.assertEqual([s.id for s in keeper.items], [2, 3])
        self.assertIsNone(TopKSnapshotKeeper().min_confidence)


class TestSnapshotRetention(unittest.TestCase):
    """截图保留流程测试类"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.repository = InMemoryAnalysisRepository()
        self.store = SnapshotStore(self.temp_dir)
        self.annotator = Mock()
        self.annotator.annotate_snapshot.side_effect = lambda frame, *args, **kwargs: frame.copy()
        self.retention = SnapshotRetention(self.repository, self.store, self.annotator, k=5)
        self.retention.start_file(1)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def retain(self, confidence, frame_index):
        return self.retention.retain(
            "job", 1, frame_index, make_frame(), EventType.SPARK,
            frame_index / 10.0, frame_index, confidence, None
        )

    def stored_confidences(self):
        return [s.confidence for s in self.repository.list_snapshots_by_confidence(1)]

    def test_top_k_with_eviction(self):
        """前 5 张无条件保留，0.95 淘汰 0.5，0.4 不保留"""
        snapshots = [self.retain(c, i) for i, c in enumerate([0.9, 0.8, 0.7, 0.6, 0.5], start=1)]
        lowest_path = snapshots[-1].image_path
        self.assertTrue(os.path.isfile(lowest_path))

        kept = self.retain(0.95, 6)
        self.assertIsNotNone(kept)
        self.assertFalse(os.path.exists(lowest_path))
        self.assertTrue(os.path.isfile(kept.image_path))

        self.assertIsNone(self.retain(0.4, 7))
        self.assertEqual(self.stored_confidences(), [0.95, 0.9, 0.8, 0.7, 0.6])
        self.assertEqual(self.annotator.annotate_snapshot.call_count, 6)

    def test_snapshot_record_fields(self):
        snapshot = self.retain(0.7, 12)
        self.assertEqual(snapshot.file_id, 1)
        self.assertEqual(snapshot.event_id, 12)
        self.assertEqual(snapshot.frame_index, 12)
        self.assertEqual((snapshot.image_width, snapshot.image_height), (64, 48))
        self.assertEqual(snapshot.seq_no, 1)
        self.assertTrue(snapshot.image_path.endswith("1_12_SPARK_t1.200s.jpg"))

    def test_failed_record_removes_file(self):
        with patch.object(self.repository, 'add_snapshot',
                          side_effect=PersistenceError("写入截图记录")):
            with self.assertRaises(PersistenceError):
                self.retain(0.7, 3)

        snapshot_dir = self.store.snapshot_dir("job")
        self.assertEqual(os.listdir(snapshot_dir), [])
        self.assertEqual(len(self.retention.keeper), 0)

    def test_failed_delete_is_retried(self):
        for i, c in enumerate([0.9, 0.8, 0.7, 0.6, 0.5], start=1):
            self.retain(c, i)

        with patch.object(self.store, 'delete', return_value=False):
            self.retain(0.95, 6)
        pending = self.retention.pending_deletes()
        self.assertEqual(len(pending), 1)
        self.assertTrue(os.path.isfile(pending[0][1]))

        self.retention.enforce_limit(1)
        self.assertEqual(self.retention.pending_deletes(), [])
        self.assertFalse(os.path.exists(pending[0][1]))

    def test_enforce_limit_removes_extra_snapshots(self):
        """续跑遗留的多余截图在视频结束时被清理"""
        paths = []
        for i, conf in enumerate([0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7], start=1):
            path = self.store.build_path("job", 1, i, "FLASH", i / 10.0)
            self.store.write(path, make_frame())
            paths.append(path)
            self.repository.add_snapshot(Snapshot(file_id=1, image_path=path,
                                                  confidence=conf, seq_no=i))

        self.retention.start_file(1)
        self.assertEqual(self.retention.next_seq, 8)

        removed = self.retention.enforce_limit(1)

        self.assertEqual(removed, 2)
        self.assertEqual(self.stored_confidences(), [0.7, 0.6, 0.5, 0.4, 0.3])
        self.assertFalse(os.path.exists(paths[0]))
        self.assertFalse(os.path.exists(paths[1]))
        self.assertTrue(os.path.isfile(paths[2]))


if __name__ == '__main__':
    unittest.main()
