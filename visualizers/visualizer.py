"""
截图标注模块

在事件峰值帧上绘制检测框与事件标签，供人工复核。
使用 supervision 绘制边界框，OpenCV 绘制文字。
"""

import cv2
import numpy as np
import supervision as sv
from typing import Dict, Optional, Tuple

from models.interfaces import ISnapshotAnnotator
from models.data_models import BoundingBox, EventType


class SnapshotAnnotator(ISnapshotAnnotator):
    """事件截图标注器

    闪光用黄色，火花用红色；全局闪光没有检测框时只绘制文字。
    """

    # BGR
    EVENT_COLORS: Dict[EventType, Tuple[int, int, int]] = {
        EventType.FLASH: (0, 255, 255),
        EventType.SPARK: (0, 0, 255),
    }

    def __init__(self, box_thickness: int = 2, text_thickness: int = 2,
                 text_scale: float = 1.0, text_origin: Tuple[int, int] = (10, 30)):
        """初始化标注器

        Args:
            box_thickness: 边界框线条粗细
            text_thickness: 文本线条粗细
            text_scale: 文本缩放比例
            text_origin: 文本左下角位置
        """
        self.box_thickness = box_thickness
        self.text_thickness = text_thickness
        self.text_scale = text_scale
        self.text_origin = text_origin

        self.box_annotators: Dict[EventType, sv.BoxAnnotator] = {
            event_type: sv.BoxAnnotator(
                color=sv.Color(r=bgr[2], g=bgr[1], b=bgr[0]),
                thickness=self.box_thickness
            )
            for event_type, bgr in self.EVENT_COLORS.items()
        }

    @staticmethod
    def format_label(event_type: EventType, time_sec: float, confidence: float) -> str:
        return f"{event_type.label} t={time_sec:.2f}s conf={confidence:.2f}"

    @staticmethod
    def to_detections(bbox: BoundingBox, confidence: float) -> sv.Detections:
        return sv.Detections(
            xyxy=np.array([bbox.to_xyxy()], dtype=float),
            confidence=np.array([confidence], dtype=float)
        )

    def annotate_snapshot(self, frame: np.ndarray, event_type: EventType,
                          time_sec: float, confidence: float,
                          bbox: Optional[BoundingBox] = None) -> np.ndarray:
        """标注事件截图

        Args:
            frame: 原图帧（BGR）
            event_type: 事件类型
            time_sec: 事件时间（秒）
            confidence: 置信度
            bbox: 检测框（原图坐标），None 表示全局事件

        Returns:
            np.ndarray: 标注后的新图像，不修改原帧
        """
        annotated = frame.copy()
        if annotated.ndim == 2:
            annotated = cv2.cvtColor(annotated, cv2.COLOR_GRAY2BGR)

        if bbox is not None and bbox.is_valid:
            annotated = self.box_annotators[event_type].annotate(
                scene=annotated,
                detections=self.to_detections(bbox, confidence)
            )

        cv2.putText(
            annotated,
            self.format_label(event_type, time_sec, confidence),
            self.text_origin,
            cv2.FONT_HERSHEY_SIMPLEX,
            self.text_scale,
            self.EVENT_COLORS[event_type],
            self.text_thickness
        )
        return annotated
