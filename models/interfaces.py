"""
核心接口定义

定义系统中各个模块与外部协作者之间的抽象接口，确保模块间的解耦和可替换性。
持久化、进度汇总与视频解码都通过接口注入到单视频处理单元中。
"""

from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Tuple
import numpy as np
from .data_models import (
    Config, VideoInfo, Job, VideoFile, AnalysisEvent, Snapshot, BoundingBox, EventType
)


class IConfigManager(ABC):
    """配置管理器接口

    定义配置管理的标准接口，支持配置文件和命令行参数处理。
    """

    @abstractmethod
    def load_config(self) -> Config:
        """加载配置信息

        Returns:
            Config: 配置对象
        """
        pass


class IVideoDecoder(ABC):
    """视频解码器接口

    顺序解码视频帧，并提供基本视频信息。
    """

    @abstractmethod
    def get_video_info(self) -> VideoInfo:
        """获取视频信息

        Returns:
            VideoInfo: 视频信息对象
        """
        pass

    @abstractmethod
    def read_frames(self) -> Iterator[Tuple[bool, Optional[np.ndarray]]]:
        """顺序读取视频帧

        Yields:
            Tuple[bool, Optional[np.ndarray]]: (是否成功解码, 帧数据)
        """
        pass

    @abstractmethod
    def release_resources(self) -> None:
        """释放视频资源"""
        pass


class IAnalysisRepository(ABC):
    """分析结果仓储接口

    每次调用返回即视为已持久化。各写入点相互独立，
    视频处理中途取消时，已提交的事件/截图保持不变。
    """

    @abstractmethod
    def get_job(self, job_id: int) -> Optional[Job]:
        pass

    @abstractmethod
    def add_job(self, job: Job) -> Job:
        pass

    @abstractmethod
    def update_job(self, job: Job) -> None:
        pass

    @abstractmethod
    def get_file(self, file_id: int) -> Optional[VideoFile]:
        pass

    @abstractmethod
    def add_file(self, video_file: VideoFile) -> VideoFile:
        pass

    @abstractmethod
    def update_file(self, video_file: VideoFile) -> None:
        pass

    @abstractmethod
    def list_files(self, job_id: int) -> List[VideoFile]:
        pass

    @abstractmethod
    def add_event(self, event: AnalysisEvent) -> AnalysisEvent:
        pass

    @abstractmethod
    def update_event(self, event: AnalysisEvent) -> None:
        pass

    @abstractmethod
    def list_events(self, file_id: int) -> List[AnalysisEvent]:
        pass

    @abstractmethod
    def count_events(self, job_id: int) -> int:
        pass

    @abstractmethod
    def add_snapshot(self, snapshot: Snapshot) -> Snapshot:
        pass

    @abstractmethod
    def delete_snapshot(self, snapshot_id: int) -> None:
        pass

    @abstractmethod
    def list_snapshots_by_confidence(self, file_id: int) -> List[Snapshot]:
        """按置信度降序返回某视频的全部截图"""
        pass

    @abstractmethod
    def delete_results_for_file(self, file_id: int) -> Tuple[int, int]:
        """删除某视频的全部事件与截图记录

        Returns:
            Tuple[int, int]: (删除的事件数, 删除的截图数)
        """
        pass


class IProgressAggregator(ABC):
    """任务进度汇总接口

    每个视频到达终态（成功或失败）时恰好调用一次。
    """

    @abstractmethod
    def update_job_progress(self, job_id: int) -> None:
        pass


class ISnapshotAnnotator(ABC):
    """截图标注接口"""

    @abstractmethod
    def annotate_snapshot(self, frame: np.ndarray, event_type: EventType,
                          time_sec: float, confidence: float,
                          bbox: Optional[BoundingBox] = None) -> np.ndarray:
        """在截图上绘制边界框和事件标签

        Args:
            frame: 原图帧
            event_type: 事件类型
            time_sec: 事件时间（秒）
            confidence: 置信度
            bbox: 边界框（原图坐标），全局闪光时为 None

        Returns:
            np.ndarray: 标注后的帧
        """
        pass
