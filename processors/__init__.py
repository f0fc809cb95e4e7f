"""
处理器模块

包含视频解码、分析队列与工作线程、单视频处理单元、事件合并、证据保留和任务服务。
"""

from .video_processor import VideoDecoder
from .analysis_queue import AnalysisQueue
from .event_merger import EventMerger
from .evidence import FrameRingBuffer, TopKSnapshotKeeper, SnapshotRetention
from .spark_detection_service import SparkDetectionService
from .analysis_worker import AnalysisWorker
from .analysis_service import VideoAnalysisService, JobNotFoundError

__all__ = [
    'VideoDecoder',
    'AnalysisQueue',
    'EventMerger',
    'FrameRingBuffer',
    'TopKSnapshotKeeper',
    'SnapshotRetention',
    'SparkDetectionService',
    'AnalysisWorker',
    'VideoAnalysisService',
    'JobNotFoundError'
]
