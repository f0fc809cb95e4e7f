"""
采样帧统计与长期基线单元测试
"""

import numpy as np
import pytest

from detectors.baseline import RobustBaseline
from detectors.frame_statistics import (
    prepare_frame, resize_if_needed, bright_threshold, ratio_above_threshold,
    compute_statistics
)
from models.data_models import AlgorithmConfig, SamplePoint


def uniform_frame(value: int, width: int = 320, height: int = 240) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


def sample(mean: float, bright_ratio: float = 0.0, candidate: bool = False) -> SamplePoint:
    return SamplePoint(frame_index=0, time_ms=0, mean=mean,
                       bright_ratio=bright_ratio, candidate=candidate)


class TestPrepareFrame:
    """采样帧预处理测试"""

    def setup_method(self):
        self.config = AlgorithmConfig()

    def test_converts_to_gray(self):
        prepared = prepare_frame(uniform_frame(80), self.config)
        assert prepared.gray.ndim == 2
        assert prepared.scale == 1.0
        assert (prepared.width, prepared.height) == (320, 240)
        assert (prepared.orig_width, prepared.orig_height) == (320, 240)

    def test_accepts_gray_input(self):
        gray = np.full((120, 160), 50, dtype=np.uint8)
        prepared = prepare_frame(gray, self.config)
        assert prepared.gray.shape == (120, 160)

    def test_resizes_wide_frames(self):
        config = AlgorithmConfig(resize_max_width=160)
        prepared = prepare_frame(uniform_frame(80, width=640, height=480), config)

        assert prepared.width == 160
        assert prepared.height == 120
        assert prepared.scale == pytest.approx(0.25)
        assert prepared.orig_width == 640

    def test_resize_disabled(self):
        image = uniform_frame(10, width=2000, height=100)
        resized, scale = resize_if_needed(image, 0)
        assert resized is image
        assert scale == 1.0

    def test_empty_frame_raises(self):
        with pytest.raises(ValueError):
            prepare_frame(np.zeros((0, 0, 3), dtype=np.uint8), self.config)
        with pytest.raises(ValueError):
            prepare_frame(None, self.config)


class TestComputeStatistics:
    """采样帧统计量测试"""

    def setup_method(self):
        self.config = AlgorithmConfig()

    def test_bright_threshold_is_clamped(self):
        assert bright_threshold(10.0, 1.0, self.config) == 170
        assert bright_threshold(240.0, 20.0, self.config) == 250
        assert bright_threshold(180.0, 5.0, self.config) == 190

    def test_ratio_is_strictly_above(self):
        gray = np.array([[100, 200], [201, 50]], dtype=np.uint8)
        assert ratio_above_threshold(gray, 200) == pytest.approx(0.25)

    def test_signed_deltas(self):
        """变亮为正、变暗为负"""
        prev = prepare_frame(uniform_frame(60), self.config)
        curr = prepare_frame(uniform_frame(90), self.config)

        brighter = compute_statistics(prev, curr, self.config, frame_index=4, time_ms=400)
        darker = compute_statistics(curr, prev, self.config)

        assert brighter.mean == pytest.approx(90.0)
        assert brighter.mean_delta == pytest.approx(30.0)
        assert darker.mean_delta == pytest.approx(-30.0)
        assert brighter.frame_index == 4
        assert brighter.time_ms == 400
        assert brighter.frame_width == 320

    def test_bright_ratio_uses_current_threshold(self):
        prev = prepare_frame(uniform_frame(60), self.config)
        curr = prepare_frame(uniform_frame(220), self.config)

        stats = compute_statistics(prev, curr, self.config)
        # 阈值钳制到 250，220 的画面没有高亮像素
        assert stats.bright_ratio == 0.0
        assert stats.bright_delta == 0.0

    def test_rise_without_baseline_history_is_zero(self):
        prev = prepare_frame(uniform_frame(60), self.config)
        curr = prepare_frame(uniform_frame(90), self.config)

        stats = compute_statistics(prev, curr, self.config, RobustBaseline())
        assert stats.mean_rise == 0.0
        assert stats.bright_rise == 0.0

    def test_rise_relative_to_baseline(self):
        baseline = RobustBaseline()
        for _ in range(5):
            baseline.update(sample(60.0))

        prev = prepare_frame(uniform_frame(60), self.config)
        curr = prepare_frame(uniform_frame(90), self.config)
        stats = compute_statistics(prev, curr, self.config, baseline)
        assert stats.mean_rise == pytest.approx(30.0)


class TestRobustBaseline:
    """长期基线测试"""

    def test_history_size_from_sample_rate(self):
        baseline = RobustBaseline.for_sample_rate(10)
        assert baseline.stale_samples == 30
        assert RobustBaseline.for_sample_rate(1).stale_samples == 8

    def test_no_history(self):
        baseline = RobustBaseline()
        assert not baseline.has_history
        assert baseline.level() == (0.0, 0.0)
        assert baseline.rise(100.0, 0.5) == (0.0, 0.0)

    def test_ewma_then_median(self):
        baseline = RobustBaseline(alpha=0.5)
        baseline.update(sample(60.0))
        assert baseline.level()[0] == pytest.approx(60.0)

        baseline.update(sample(100.0))
        # 少于 3 个样本时使用 EWMA
        assert baseline.level()[0] == pytest.approx(80.0)

        baseline.update(sample(62.0))
        # 3 个样本起使用中位数
        assert baseline.level()[0] == pytest.approx(62.0)

    def test_candidates_do_not_update(self):
        baseline = RobustBaseline(stale_samples=3)
        baseline.update(sample(60.0))

        assert baseline.update(sample(200.0, candidate=True)) is False
        assert baseline.update(sample(60.0), pulse_active=True) is False
        assert baseline.skipped == 2
        assert baseline.level()[0] == pytest.approx(60.0)

    def test_stale_baseline_absorbs(self):
        """连续跳过超过上限后强制吸收，重新锚定"""
        baseline = RobustBaseline(stale_samples=3)
        baseline.update(sample(60.0))

        results = [baseline.update(sample(150.0, candidate=True)) for _ in range(4)]
        assert results == [False, False, False, True]
        assert baseline.skipped == 0

    def test_reset(self):
        baseline = RobustBaseline()
        baseline.update(sample(60.0))
        baseline.reset()
        assert not baseline.has_history
