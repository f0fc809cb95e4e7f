"""
采样帧统计模块

负责采样帧的预处理（灰度、缩放、模糊）以及逐帧统计量计算：
均值、标准差、动态高亮比例，以及相对上一采样帧与长期基线的变化量。
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import cv2
import numpy as np

from models.data_models import AlgorithmConfig, SamplePoint
from .baseline import RobustBaseline


@dataclass
class PreparedFrame:
    """预处理后的采样帧

    gray 为灰度（可能已缩放、已模糊）图像；
    scale = 处理宽度 / 原图宽度，用于把检测框映射回原图坐标。
    """
    gray: np.ndarray
    scale: float
    orig_width: int
    orig_height: int

    @property
    def width(self) -> int:
        return int(self.gray.shape[1])

    @property
    def height(self) -> int:
        return int(self.gray.shape[0])


def resize_if_needed(image: np.ndarray, resize_max_width: int) -> Tuple[np.ndarray, float]:
    """宽度超过上限时按比例缩小（INTER_AREA）

    Returns:
        Tuple[np.ndarray, float]: (图像, 缩放比例)
    """
    height, width = image.shape[:2]
    if resize_max_width <= 0 or width <= resize_max_width:
        return image, 1.0

    scale = resize_max_width / float(width)
    new_height = max(1, int(round(height * scale)))
    resized = cv2.resize(image, (resize_max_width, new_height), interpolation=cv2.INTER_AREA)
    return resized, scale


def prepare_frame(frame: np.ndarray, config: AlgorithmConfig) -> PreparedFrame:
    """把原图帧转换为检测用的灰度帧

    Args:
        frame: BGR 原图（也接受已是单通道的灰度图）
        config: 算法参数

    Returns:
        PreparedFrame: 预处理结果
    """
    if frame is None or frame.size == 0:
        raise ValueError("空帧")

    orig_height, orig_width = frame.shape[:2]
    small, scale = resize_if_needed(frame, config.resize_max_width)

    if small.ndim == 3:
        gray = cv2.cvtColor(small, cv2.COLOR_BGR2GRAY)
    else:
        gray = small

    k = config.effective_blur_kernel
    if k >= 3:
        gray = cv2.GaussianBlur(gray, (k, k), 0)

    return PreparedFrame(gray=gray, scale=scale, orig_width=int(orig_width), orig_height=int(orig_height))


def bright_threshold(mean: float, std: float, config: AlgorithmConfig) -> int:
    """动态高亮阈值：clamp(round(mean + K*std), min, max)"""
    thr = int(round(mean + config.bright_std_k * std))
    return min(max(thr, config.bright_thr_min), config.bright_thr_max)


def ratio_above_threshold(gray: np.ndarray, threshold: int) -> float:
    """灰度严格大于阈值的像素占比"""
    total = max(1, gray.size)
    return float(np.count_nonzero(gray > threshold)) / total


def compute_statistics(prev: PreparedFrame, curr: PreparedFrame, config: AlgorithmConfig,
                       baseline: Optional[RobustBaseline] = None,
                       frame_index: int = 0, time_ms: int = 0) -> SamplePoint:
    """计算采样帧统计量

    高亮阈值由当前帧决定，并以同一阈值统计上一帧的高亮比例，
    差值均为有符号量（变亮为正）。基线无历史时抬升量为 0。

    Args:
        prev: 上一采样帧
        curr: 当前采样帧
        config: 算法参数
        baseline: 长期基线，None 表示不计算抬升量
        frame_index: 当前帧序号
        time_ms: 当前帧时间戳（毫秒）

    Returns:
        SamplePoint: 统计点（尚未做候选判定）
    """
    mean_curr, std_curr = cv2.meanStdDev(curr.gray)
    mean_curr = float(mean_curr[0][0])
    std_curr = float(std_curr[0][0])
    mean_prev = float(cv2.mean(prev.gray)[0])

    thr = bright_threshold(mean_curr, std_curr, config)
    br_curr = ratio_above_threshold(curr.gray, thr)
    br_prev = ratio_above_threshold(prev.gray, thr)

    mean_rise, bright_rise = (0.0, 0.0)
    if baseline is not None:
        mean_rise, bright_rise = baseline.rise(mean_curr, br_curr)

    return SamplePoint(
        frame_index=frame_index,
        time_ms=time_ms,
        mean=mean_curr,
        std=std_curr,
        bright_ratio=br_curr,
        mean_delta=mean_curr - mean_prev,
        bright_delta=br_curr - br_prev,
        mean_rise=mean_rise,
        bright_rise=bright_rise,
        frame_width=curr.orig_width
    )
