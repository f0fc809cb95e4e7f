"""
脉冲确认模块

脉冲观察期满后回看滑动窗口，确认"快速上升 + 快速回落 + 持续时间短 + 无明显位移"，
并给出闪光/火花分类、置信度与最佳检测框。

判定步骤:
1. 峰值选择：优先带检测框的样本，否则取基线抬升最大的样本，再否则取帧间差最大的样本
2. 局部基线：峰值前 [peak-1500, peak-200] 毫秒内样本的中位数
3. 上升检查（含宽松回退：窗口内任一样本帧间突变即可）
4. 回落检查：峰值后 max_pulse_ms + 400 毫秒内回到基线附近
5. 持续高亮抑制
6. 移动光源抑制
7. 闪光/火花分类
8. 置信度计算
"""

from typing import List, Optional, Sequence, Tuple
import math
import numpy as np
import logging

from models.data_models import AlgorithmConfig, BoundingBox, PulseDecision, SamplePoint


LOOKBACK_START_MS = 1500
LOOKBACK_END_MS = 200
FALL_EXTRA_MS = 400
MOTION_RADIUS_MS = 1000
MOTION_MIN_POINTS = 3


class PulseConfirmer:
    """脉冲确认器（无状态）"""

    def __init__(self, config: AlgorithmConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

    def confirm(self, samples: Sequence[SamplePoint], max_pulse_ms: Optional[int] = None,
                frame_width: int = 0) -> PulseDecision:
        """确认一个脉冲

        Args:
            samples: 滑动窗口中的采样点
            max_pulse_ms: 脉冲观察期（毫秒），默认取参数中的值
            frame_width: 原图宽度，用于位移比例判定；0 表示由检测框估计

        Returns:
            PulseDecision: 确认结果，is_event 为真时才应生成事件
        """
        cfg = self.config
        if max_pulse_ms is None:
            max_pulse_ms = cfg.max_pulse_ms

        arr = sorted(samples, key=lambda s: s.time_ms)
        if len(arr) < 2:
            return PulseDecision(accepted=False, reason="样本不足")

        peak_idx = self.select_peak(arr)
        peak = arr[peak_idx]
        best_bbox = self.best_bbox(arr, peak)

        base_mean, base_br = self.local_baseline(arr, peak_idx)
        mean_rise = peak.mean - base_mean
        bright_rise = peak.bright_ratio - base_br

        decision = PulseDecision(accepted=False, bbox=best_bbox,
                                 peak_time_ms=peak.time_ms, peak=peak)

        has_rise = mean_rise >= cfg.mean_delta_rise or bright_rise >= cfg.bright_ratio_delta
        if not has_rise:
            # 宽松回退：窗口内任一样本出现帧间突变即视为上升
            has_rise = any(s.mean_delta >= cfg.global_brightness_delta or
                           s.bright_delta >= cfg.bright_ratio_delta for s in arr)
        if not has_rise:
            decision.reason = "无上升"
            return decision

        if not self.has_fall(arr, peak_idx, base_mean, base_br, max_pulse_ms):
            decision.reason = "无回落"
            return decision

        high_span_ms = self.high_span_ms(arr, base_mean)
        decision.sustain_reject = high_span_ms >= cfg.sustain_reject_sec * 1000.0
        decision.motion_reject = self.check_motion(arr, peak.time_ms, frame_width)

        if high_span_ms > max(260.0, cfg.max_pulse_sec * 1000.0):
            decision.reason = f"高亮持续 {high_span_ms}ms，非短脉冲"
            return decision

        flash_by_mean = mean_rise >= max(cfg.mean_delta_rise, 0.75 * cfg.global_brightness_delta)
        flash_by_area = peak.area_ratio >= cfg.flash_area_ratio

        decision.accepted = True
        decision.is_flash = flash_by_mean or flash_by_area
        decision.confidence = self.score(peak, mean_rise, bright_rise, has_fall=True)
        if decision.motion_reject:
            decision.reason = "移动光源"
        elif decision.sustain_reject:
            decision.reason = "持续光源"
        return decision

    def select_peak(self, arr: List[SamplePoint]) -> int:
        """选择峰值样本下标，分数相同取最早者"""
        best_idx, best_score = -1, -math.inf
        for i, s in enumerate(arr):
            if not s.has_bbox:
                continue
            score = max(s.confidence, 1000.0 * s.bright_delta, 800.0 * max(0.0, s.bright_rise))
            if score > best_score:
                best_idx, best_score = i, score
        if best_idx >= 0:
            return best_idx

        best_idx, best_rise = -1, 0.0
        for i, s in enumerate(arr):
            if s.mean_rise > best_rise:
                best_idx, best_rise = i, s.mean_rise
        if best_idx >= 0:
            return best_idx

        best_idx, best_delta = 0, arr[0].mean_delta
        for i, s in enumerate(arr):
            if s.mean_delta > best_delta:
                best_idx, best_delta = i, s.mean_delta
        return best_idx

    @staticmethod
    def best_bbox(arr: List[SamplePoint], peak: SamplePoint) -> Optional[BoundingBox]:
        """峰值检测框，否则取时间上最近的有效检测框"""
        if peak.has_bbox:
            return peak.bbox
        nearest, nearest_dt = None, None
        for s in arr:
            if not s.has_bbox:
                continue
            dt = abs(s.time_ms - peak.time_ms)
            if nearest_dt is None or dt < nearest_dt:
                nearest, nearest_dt = s.bbox, dt
        return nearest

    @staticmethod
    def local_baseline(arr: List[SamplePoint], peak_idx: int) -> Tuple[float, float]:
        """峰值前的局部基线 (均值中位数, 高亮比例中位数)"""
        peak_ms = arr[peak_idx].time_ms
        pre = [s for s in arr
               if peak_ms - LOOKBACK_START_MS <= s.time_ms <= peak_ms - LOOKBACK_END_MS]
        if not pre:
            pre = arr[:peak_idx]
        if not pre:
            pre = arr[:2]
        return (float(np.median([s.mean for s in pre])),
                float(np.median([s.bright_ratio for s in pre])))

    def has_fall(self, arr: List[SamplePoint], peak_idx: int, base_mean: float,
                 base_br: float, max_pulse_ms: int) -> bool:
        cfg = self.config
        fall_end = arr[peak_idx].time_ms + max_pulse_ms + FALL_EXTRA_MS
        mean_back = base_mean + cfg.mean_delta_fall
        br_back = base_br + 0.8 * cfg.bright_ratio_delta
        for s in arr[peak_idx:]:
            if s.time_ms > fall_end:
                break
            if s.mean <= mean_back and s.bright_ratio <= br_back:
                return True
        return False

    def high_span_ms(self, arr: List[SamplePoint], base_mean: float) -> int:
        """均值高于 基线 + mean_delta_rise 的首尾时间跨度"""
        threshold = base_mean + self.config.mean_delta_rise
        high_times = [s.time_ms for s in arr if s.mean >= threshold]
        if not high_times:
            return 0
        return high_times[-1] - high_times[0]

    def check_motion(self, arr: List[SamplePoint], peak_ms: int, frame_width: int = 0) -> bool:
        """移动光源判定

        峰值前后 1 秒内至少 3 个带检测框的样本时，累计中心位移
        达到 画面宽度 * max_motion_ratio_per_sec 即判为移动光源。
        """
        points = [s for s in arr
                  if abs(s.time_ms - peak_ms) <= MOTION_RADIUS_MS and s.has_bbox]
        if len(points) < MOTION_MIN_POINTS:
            return False

        centers = [s.center if s.center is not None else s.bbox.center for s in points]
        distance = 0.0
        for (x0, y0), (x1, y1) in zip(centers, centers[1:]):
            distance += math.hypot(x1 - x0, y1 - y0)

        width = frame_width
        if width <= 0:
            width = max([1] + [s.frame_width for s in points] + [s.bbox.right for s in points])
        return distance >= width * self.config.max_motion_ratio_per_sec

    @staticmethod
    def score(peak: SamplePoint, mean_rise: float, bright_rise: float, has_fall: bool) -> float:
        """置信度：有检测框时偏重局部信号，否则偏重全局均值抬升，钳制到 [0.10, 1]"""
        mean_rise_ratio = min(1.0, max(0.0, mean_rise) / 25.0)
        bright_rise_ratio = min(1.0, max(0.0, bright_rise) / 0.006)
        fall_score = 0.10 if has_fall else 0.0

        if peak.has_bbox:
            area_ratio = min(1.0, peak.area_ratio * 4.0)
            value = (0.35 * bright_rise_ratio + 0.25 * area_ratio +
                     0.30 * mean_rise_ratio + fall_score)
        else:
            mean_delta_ratio = min(1.0, max(0.0, peak.mean_delta) / 18.0)
            value = (0.60 * mean_rise_ratio + 0.15 * mean_delta_ratio +
                     0.15 * bright_rise_ratio + fall_score)
        return max(0.10, min(1.0, value))
