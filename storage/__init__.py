"""
存储模块

包含内存仓储、任务进度汇总与截图文件存储。
"""

from .memory_repository import InMemoryAnalysisRepository
from .progress import JobProgressAggregator
from .snapshot_store import SnapshotStore

__all__ = [
    'InMemoryAnalysisRepository',
    'JobProgressAggregator',
    'SnapshotStore'
]
