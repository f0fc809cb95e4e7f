"""
内存仓储模块

以字典表保存任务、视频、事件与截图记录，所有访问由同一把锁保护。
读写都复制实体，调用方修改返回值不会影响已存储的数据。
"""

import copy
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import logging

from models.data_models import Job, VideoFile, AnalysisEvent, Snapshot
from models.interfaces import IAnalysisRepository
from models.exceptions import PersistenceError


class InMemoryAnalysisRepository(IAnalysisRepository):
    """线程安全的内存仓储"""

    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: Dict[int, Job] = {}
        self._files: Dict[int, VideoFile] = {}
        self._events: Dict[int, AnalysisEvent] = {}
        self._snapshots: Dict[int, Snapshot] = {}
        self._next_ids = {'job': 1, 'file': 1, 'event': 1, 'snapshot': 1}
        self.logger = logging.getLogger(__name__)

    def _allocate_id(self, table: str) -> int:
        new_id = self._next_ids[table]
        self._next_ids[table] += 1
        return new_id

    # 任务

    def get_job(self, job_id: int) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def add_job(self, job: Job) -> Job:
        with self._lock:
            stored = copy.deepcopy(job)
            stored.id = self._allocate_id('job')
            self._jobs[stored.id] = stored
            return copy.deepcopy(stored)

    def update_job(self, job: Job) -> None:
        with self._lock:
            if job.id not in self._jobs:
                raise PersistenceError("更新任务", f"任务不存在: {job.id}")
            stored = copy.deepcopy(job)
            stored.updated_at = datetime.now()
            self._jobs[job.id] = stored

    def list_jobs(self) -> List[Job]:
        with self._lock:
            return [copy.deepcopy(j) for j in sorted(self._jobs.values(), key=lambda j: j.id)]

    # 视频

    def get_file(self, file_id: int) -> Optional[VideoFile]:
        with self._lock:
            video_file = self._files.get(file_id)
            return copy.deepcopy(video_file) if video_file else None

    def add_file(self, video_file: VideoFile) -> VideoFile:
        with self._lock:
            stored = copy.deepcopy(video_file)
            stored.id = self._allocate_id('file')
            self._files[stored.id] = stored
            return copy.deepcopy(stored)

    def update_file(self, video_file: VideoFile) -> None:
        with self._lock:
            if video_file.id not in self._files:
                raise PersistenceError("更新视频状态", f"视频不存在: {video_file.id}")
            stored = copy.deepcopy(video_file)
            stored.updated_at = datetime.now()
            self._files[video_file.id] = stored

    def list_files(self, job_id: int) -> List[VideoFile]:
        with self._lock:
            files = [f for f in self._files.values() if f.job_id == job_id]
            return [copy.deepcopy(f) for f in sorted(files, key=lambda f: (f.seq_no, f.id))]

    # 事件

    def add_event(self, event: AnalysisEvent) -> AnalysisEvent:
        with self._lock:
            stored = copy.deepcopy(event)
            stored.id = self._allocate_id('event')
            self._events[stored.id] = stored
            return copy.deepcopy(stored)

    def update_event(self, event: AnalysisEvent) -> None:
        with self._lock:
            if event.id not in self._events:
                raise PersistenceError("更新事件", f"事件不存在: {event.id}")
            stored = copy.deepcopy(event)
            stored.updated_at = datetime.now()
            self._events[event.id] = stored

    def list_events(self, file_id: int) -> List[AnalysisEvent]:
        with self._lock:
            events = [e for e in self._events.values() if e.file_id == file_id]
            return [copy.deepcopy(e) for e in sorted(events, key=lambda e: (e.seq_no, e.id))]

    def count_events(self, job_id: int) -> int:
        with self._lock:
            return sum(1 for e in self._events.values() if e.job_id == job_id)

    # 截图

    def add_snapshot(self, snapshot: Snapshot) -> Snapshot:
        with self._lock:
            stored = copy.deepcopy(snapshot)
            stored.id = self._allocate_id('snapshot')
            self._snapshots[stored.id] = stored
            return copy.deepcopy(stored)

    def delete_snapshot(self, snapshot_id: int) -> None:
        with self._lock:
            self._snapshots.pop(snapshot_id, None)

    def list_snapshots_by_confidence(self, file_id: int) -> List[Snapshot]:
        with self._lock:
            snaps = [s for s in self._snapshots.values() if s.file_id == file_id]
            snaps.sort(key=lambda s: (-s.confidence, s.id))
            return [copy.deepcopy(s) for s in snaps]

    def delete_results_for_file(self, file_id: int) -> Tuple[int, int]:
        with self._lock:
            event_ids = [eid for eid, e in self._events.items() if e.file_id == file_id]
            snapshot_ids = [sid for sid, s in self._snapshots.items() if s.file_id == file_id]
            for eid in event_ids:
                del self._events[eid]
            for sid in snapshot_ids:
                del self._snapshots[sid]
            return len(event_ids), len(snapshot_ids)
