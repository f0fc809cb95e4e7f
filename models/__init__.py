"""
数据模型模块

包含系统中使用的核心数据类、接口定义和异常类。
"""

from .data_models import (
    Config,
    AlgorithmConfig,
    VideoInfo,
    BoundingBox,
    SamplePoint,
    CandidateResult,
    PendingPulse,
    PulseDecision,
    FileStatus,
    JobStatus,
    EventType,
    Job,
    VideoFile,
    AnalysisEvent,
    Snapshot,
    FileResult,
    ReanalyzeResult
)
from .interfaces import (
    IConfigManager,
    IVideoDecoder,
    IAnalysisRepository,
    IProgressAggregator,
    ISnapshotAnnotator
)
from .exceptions import (
    SparkDetectionError,
    VideoProcessingError,
    VideoNotFoundError,
    UnsupportedFormatError,
    CorruptedFileError,
    ConfigurationError,
    DetectionError,
    PersistenceError,
    QueueClosedError,
    OperationCancelledError
)

__all__ = [
    # 数据模型
    'Config',
    'AlgorithmConfig',
    'VideoInfo',
    'BoundingBox',
    'SamplePoint',
    'CandidateResult',
    'PendingPulse',
    'PulseDecision',
    'FileStatus',
    'JobStatus',
    'EventType',
    'Job',
    'VideoFile',
    'AnalysisEvent',
    'Snapshot',
    'FileResult',
    'ReanalyzeResult',

    # 接口定义
    'IConfigManager',
    'IVideoDecoder',
    'IAnalysisRepository',
    'IProgressAggregator',
    'ISnapshotAnnotator',

    # 异常类
    'SparkDetectionError',
    'VideoProcessingError',
    'VideoNotFoundError',
    'UnsupportedFormatError',
    'CorruptedFileError',
    'ConfigurationError',
    'DetectionError',
    'PersistenceError',
    'QueueClosedError',
    'OperationCancelledError'
]
