"""
候选检测模块

判定一个采样帧是否为检测候选：
1) 全局快速路径：亮度/高亮比例相对基线或相对上一帧的突变；
2) 局部慢速路径：帧差 + 阈值 + 闭运算 + 外轮廓，取最大轮廓作为检测框。
两条路径都会尝试提取检测框（均匀的整体变亮没有轮廓），检测框一律映射回原图坐标。
"""

import cv2
import numpy as np
import logging
from typing import Optional

from models.data_models import AlgorithmConfig, BoundingBox, CandidateResult, SamplePoint
from .frame_statistics import PreparedFrame


def clamp_rect(bbox: BoundingBox, width: int, height: int) -> BoundingBox:
    """把矩形裁剪到画面范围内，宽高至少为 1"""
    if width <= 1 or height <= 1:
        return bbox

    x = max(0, min(width - 1, bbox.x))
    y = max(0, min(height - 1, bbox.y))
    w = max(1, min(width - x, bbox.w))
    h = max(1, min(height - y, bbox.h))
    return BoundingBox(x, y, w, h)


def local_confidence(area_ratio: float, stats: SamplePoint) -> float:
    """局部候选置信度，负向变化不计分，结果钳制到 [0.08, 1]"""
    score = (
        0.45 * min(1.0, 7.0 * area_ratio) +
        0.25 * min(1.0, max(0.0, stats.bright_delta) / 0.006) +
        0.20 * min(1.0, max(0.0, stats.mean_delta) / 18.0) +
        0.10 * min(1.0, max(0.0, stats.mean_rise) / 20.0)
    )
    return max(0.08, min(1.0, score))


class CandidateDetector:
    """候选检测器

    无状态，可在同一视频的所有采样帧之间复用。
    """

    def __init__(self, config: AlgorithmConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self._kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))

    def is_global_candidate(self, stats: SamplePoint) -> bool:
        """全局快速路径判定"""
        cfg = self.config
        return (
            stats.mean_rise >= cfg.mean_delta_rise or
            stats.bright_rise >= cfg.bright_ratio_delta or
            stats.mean_delta >= cfg.global_brightness_delta or
            stats.bright_delta >= cfg.bright_ratio_delta
        )

    def diff_threshold(self, diff: np.ndarray) -> float:
        """帧差二值化阈值：固定阈值或 max(下限, mean + k*std)，钳制到 [1, 255]"""
        cfg = self.config
        thr = float(cfg.diff_threshold)
        if cfg.adaptive_diff_k > 0:
            mean, std = cv2.meanStdDev(diff)
            thr = max(float(cfg.diff_threshold_min),
                      float(mean[0][0]) + cfg.adaptive_diff_k * float(std[0][0]))
        return max(1.0, min(255.0, thr))

    def detect(self, prev: PreparedFrame, curr: PreparedFrame, stats: SamplePoint) -> CandidateResult:
        """对当前采样帧做候选判定

        Args:
            prev: 上一采样帧（预处理后）
            curr: 当前采样帧（预处理后）
            stats: 当前帧统计量

        Returns:
            CandidateResult: 判定结果；全局候选只在存在局部变化区域时附带检测框，
            均匀的整体变亮不带检测框
        """
        is_global = self.is_global_candidate(stats)

        if prev.gray.shape != curr.gray.shape:
            self.logger.debug(f"帧尺寸变化，跳过局部检测: {prev.gray.shape} -> {curr.gray.shape}")
            return CandidateResult(is_candidate=is_global)

        bbox = self._largest_change_region(prev.gray, curr.gray)
        if bbox is None:
            return CandidateResult(is_candidate=is_global)

        # 全局候选也携带检测框，供峰值选择与移动光源判定使用
        bbox = self._to_original(bbox, curr)
        frame_area = max(1.0, float(curr.orig_width * curr.orig_height))
        area_ratio = bbox.area / frame_area

        return CandidateResult(
            is_candidate=True,
            bbox=bbox,
            area_ratio=area_ratio,
            confidence=local_confidence(area_ratio, stats),
            center=bbox.center
        )

    def _largest_change_region(self, prev_gray: np.ndarray, curr_gray: np.ndarray) -> Optional[BoundingBox]:
        """返回面积最大的变化区域（处理坐标），面积不足时返回 None"""
        diff = cv2.absdiff(prev_gray, curr_gray)
        thr = self.diff_threshold(diff)
        _, mask = cv2.threshold(diff, thr, 255, cv2.THRESH_BINARY)
        mask = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, self._kernel)

        contours = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)[-2]
        if not contours:
            return None

        largest = None
        largest_area = 0.0
        for contour in contours:
            area = cv2.contourArea(contour)
            if area > largest_area:
                largest_area = area
                largest = contour

        if largest is None or largest_area < max(1.0, self.config.min_contour_area):
            return None

        x, y, w, h = cv2.boundingRect(largest)
        return BoundingBox(int(x), int(y), int(w), int(h))

    @staticmethod
    def _to_original(bbox: BoundingBox, frame: PreparedFrame) -> BoundingBox:
        s = frame.scale if frame.scale > 0 else 1.0
        mapped = BoundingBox(
            x=int(round(bbox.x / s)),
            y=int(round(bbox.y / s)),
            w=max(1, int(round(bbox.w / s))),
            h=max(1, int(round(bbox.h / s)))
        )
        return clamp_rect(mapped, frame.orig_width, frame.orig_height)
