"""
候选检测器单元测试

覆盖全局快速路径、局部帧差轮廓路径、坐标映射与置信度计算。
"""

import numpy as np
import pytest

from detectors.candidate_detector import CandidateDetector, clamp_rect, local_confidence
from detectors.frame_statistics import prepare_frame, compute_statistics
from models.data_models import AlgorithmConfig, BoundingBox, SamplePoint


def gray_frame(value: int = 0, width: int = 320, height: int = 240) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


def with_square(frame: np.ndarray, x: int, y: int, size: int, value: int) -> np.ndarray:
    out = frame.copy()
    out[y:y + size, x:x + size] = value
    return out


class TestCandidateDetector:
    """CandidateDetector 测试类"""

    def setup_method(self):
        # 关闭模糊，便于精确断言检测框
        self.config = AlgorithmConfig(blur_kernel=0)
        self.detector = CandidateDetector(self.config)

    def run_detect(self, prev_bgr, curr_bgr, config=None):
        config = config or self.config
        detector = CandidateDetector(config)
        prev = prepare_frame(prev_bgr, config)
        curr = prepare_frame(curr_bgr, config)
        stats = compute_statistics(prev, curr, config)
        return detector.detect(prev, curr, stats), stats

    def test_identical_frames_are_not_candidates(self):
        result, _ = self.run_detect(gray_frame(60), gray_frame(60))
        assert not result.is_candidate
        assert result.bbox is None

    def test_global_brightness_jump(self):
        """整幅画面变亮走全局快速路径，不带检测框"""
        result, stats = self.run_detect(gray_frame(60), gray_frame(90))
        assert stats.mean_delta >= self.config.global_brightness_delta
        assert result.is_candidate
        assert result.bbox is None

    def test_global_candidate_carries_local_region(self):
        """局部亮块触发全局判定时仍附带检测框"""
        prev = gray_frame(60)
        curr = with_square(prev, 140, 100, 40, 255)

        result, stats = self.run_detect(prev, curr)

        assert self.detector.is_global_candidate(stats)
        assert result.is_candidate
        assert result.bbox == BoundingBox(140, 100, 40, 40)
        assert result.center == (160.0, 120.0)
        assert result.area_ratio == pytest.approx(1600 / (320 * 240))

    def test_global_candidate_without_change_region(self):
        """基线抬升但与上一帧无差异：仍是候选，不带检测框"""
        prev = prepare_frame(gray_frame(90), self.config)
        curr = prepare_frame(gray_frame(90), self.config)
        stats = SamplePoint(frame_index=1, time_ms=100, mean_rise=30.0)

        result = self.detector.detect(prev, curr, stats)
        assert result.is_candidate
        assert result.bbox is None

    def test_global_rise_against_baseline(self):
        stats = SamplePoint(frame_index=1, time_ms=100, mean_rise=6.0)
        assert self.detector.is_global_candidate(stats)

        stats = SamplePoint(frame_index=1, time_ms=100, bright_rise=0.0012)
        assert self.detector.is_global_candidate(stats)

        stats = SamplePoint(frame_index=1, time_ms=100, mean_rise=5.9, mean_delta=11.9)
        assert not self.detector.is_global_candidate(stats)

    def test_uniform_darkening_is_not_candidate(self):
        """均匀变化时自适应阈值等于帧差，严格大于不成立，不产生轮廓"""
        result, _ = self.run_detect(gray_frame(90), gray_frame(60))
        assert not result.is_candidate

    def test_local_change_region(self):
        prev = gray_frame(0)
        curr = with_square(prev, 100, 50, 20, 120)

        result, stats = self.run_detect(prev, curr)

        assert not self.detector.is_global_candidate(stats)
        assert result.is_candidate
        assert result.bbox == BoundingBox(100, 50, 20, 20)
        assert result.area_ratio == pytest.approx(400 / (320 * 240))
        assert result.center == (110.0, 60.0)
        assert 0.08 <= result.confidence <= 1.0

    def test_local_region_mapped_back_to_original(self):
        """缩放处理后的检测框映射回原图坐标"""
        config = AlgorithmConfig(blur_kernel=0, resize_max_width=160)
        prev = gray_frame(0)
        curr = with_square(prev, 100, 50, 20, 120)

        result, _ = self.run_detect(prev, curr, config)

        assert result.is_candidate
        assert abs(result.bbox.x - 100) <= 2
        assert abs(result.bbox.y - 50) <= 2
        assert abs(result.bbox.w - 20) <= 2
        assert abs(result.bbox.h - 20) <= 2

    def test_small_region_is_ignored(self):
        prev = gray_frame(0)
        curr = with_square(prev, 100, 50, 4, 120)
        result, _ = self.run_detect(prev, curr)
        assert not result.is_candidate

    def test_shape_mismatch_is_not_candidate(self):
        prev = prepare_frame(gray_frame(0), self.config)
        curr = prepare_frame(gray_frame(0, width=160, height=120), self.config)
        stats = SamplePoint(frame_index=1, time_ms=100)
        assert not self.detector.detect(prev, curr, stats).is_candidate

    def test_fixed_diff_threshold(self):
        config = AlgorithmConfig(adaptive_diff_k=0, diff_threshold=40)
        detector = CandidateDetector(config)
        assert detector.diff_threshold(np.zeros((10, 10), dtype=np.uint8)) == 40.0

    def test_adaptive_diff_threshold_floor(self):
        diff = np.zeros((10, 10), dtype=np.uint8)
        assert self.detector.diff_threshold(diff) == float(self.config.diff_threshold_min)


class TestHelpers:
    """辅助函数测试类"""

    def test_clamp_rect(self):
        assert clamp_rect(BoundingBox(-5, -5, 20, 20), 100, 100) == BoundingBox(0, 0, 20, 20)
        assert clamp_rect(BoundingBox(90, 95, 30, 30), 100, 100) == BoundingBox(90, 95, 10, 5)
        assert clamp_rect(BoundingBox(150, 10, 5, 5), 100, 100) == BoundingBox(99, 10, 1, 5)

    def test_local_confidence_ignores_negative_change(self):
        darker = SamplePoint(frame_index=0, time_ms=0, mean_delta=-40.0, bright_delta=-0.1)
        assert local_confidence(0.0, darker) == pytest.approx(0.08)

    def test_local_confidence_is_capped(self):
        strong = SamplePoint(frame_index=0, time_ms=0, mean_delta=50.0,
                             bright_delta=0.1, mean_rise=50.0)
        assert local_confidence(1.0, strong) == pytest.approx(1.0)
