"""
视频解码器模块

负责视频文件的校验、基本信息提取和顺序解码。
只做解码，不做任何检测；抽帧与检测由单视频处理单元负责。
"""

import os
from typing import Iterator, Optional, Tuple
import cv2
import numpy as np
from pathlib import Path

from models.data_models import VideoInfo
from models.interfaces import IVideoDecoder
from models.exceptions import (
    VideoProcessingError,
    VideoNotFoundError,
    UnsupportedFormatError,
    CorruptedFileError
)


class VideoDecoder(IVideoDecoder):
    """基于 cv2.VideoCapture 的视频解码器

    构造时完成文件校验并打开视频；打开失败视为解码失败，
    对单个视频是致命错误。
    """

    SUPPORTED_FORMATS = {'.mp4', '.avi', '.mov', '.mkv', '.flv', '.wmv', '.m4v', '.ts'}

    def __init__(self, video_path: str) -> None:
        """初始化视频解码器

        Args:
            video_path: 视频文件路径

        Raises:
            VideoProcessingError: 文件不存在、格式不支持或无法打开时抛出
        """
        self.video_path = str(Path(video_path).resolve())
        self.cap: Optional[cv2.VideoCapture] = None
        self._video_info: Optional[VideoInfo] = None
        self.frames_read = 0

        self.validate_video_file()
        self._open()

    def validate_video_file(self) -> bool:
        """检查文件是否存在、格式是否支持

        Raises:
            VideoNotFoundError: 文件不存在
            UnsupportedFormatError: 文件格式不支持
        """
        if not os.path.isfile(self.video_path):
            raise VideoNotFoundError(self.video_path)

        file_ext = Path(self.video_path).suffix.lower()
        if file_ext not in self.SUPPORTED_FORMATS:
            raise UnsupportedFormatError(
                self.video_path,
                f"当前格式: {file_ext}, 支持格式: {', '.join(sorted(self.SUPPORTED_FORMATS))}"
            )
        return True

    def _open(self) -> None:
        self.cap = cv2.VideoCapture(self.video_path)
        if not self.cap.isOpened():
            self.cap.release()
            self.cap = None
            raise CorruptedFileError(self.video_path)

    def get_video_info(self) -> VideoInfo:
        """获取视频信息

        帧率或帧数未知时对应字段为 0，由调用方决定回退值。

        Returns:
            VideoInfo: 包含视频信息的数据类
        """
        if self._video_info is not None:
            return self._video_info

        if self.cap is None:
            raise VideoProcessingError(
                f"视频未打开: {self.video_path}",
                "VIDEO_NOT_OPENED",
                "请重新创建解码器"
            )

        width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        frame_count = max(0, int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT)))

        duration = frame_count / fps if fps > 0 else 0.0

        fourcc = int(self.cap.get(cv2.CAP_PROP_FOURCC))
        codec = "".join([chr((fourcc >> 8 * i) & 0xFF) for i in range(4)])

        self._video_info = VideoInfo(
            width=width,
            height=height,
            fps=fps,
            frame_count=frame_count,
            duration=duration,
            codec=codec
        )
        return self._video_info

    def read_frames(self) -> Iterator[Tuple[bool, Optional[np.ndarray]]]:
        """顺序读取视频帧，直到解码器报告结束

        Yields:
            Tuple[bool, Optional[np.ndarray]]: (是否成功解码, 帧数据)
        """
        if self.cap is None:
            raise VideoProcessingError(
                f"视频未打开: {self.video_path}",
                "VIDEO_NOT_OPENED",
                "请重新创建解码器"
            )

        while True:
            ret, frame = self.cap.read()
            if not ret:
                break
            self.frames_read += 1
            yield ret, frame

    def release_resources(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release_resources()

    def __del__(self):
        # 解释器退出阶段 cv2 可能已被回收
        try:
            self.release_resources()
        except (AttributeError, TypeError, cv2.error):
            pass
