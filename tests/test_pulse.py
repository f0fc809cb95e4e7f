"""
脉冲状态机与脉冲确认单元测试

用合成的采样点序列覆盖：开启/确认/放弃、冷却、连续命中、
上升/回落检查、持续光源与移动光源抑制，以及闪光/火花分类。
"""

import pytest

from detectors.pulse_confirmer import PulseConfirmer
from detectors.pulse_state import PulseAction, PulseStateMachine
from detectors.sample_window import SampleWindow
from models.data_models import AlgorithmConfig, BoundingBox, SamplePoint


def point(t, mean=60.0, candidate=False, frame_index=None, **kwargs):
    return SamplePoint(
        frame_index=frame_index if frame_index is not None else t // 100,
        time_ms=t,
        mean=mean,
        candidate=candidate,
        **kwargs
    )


def boxed(t, cx, bright_delta=0.0, area_ratio=0.01, confidence=0.5):
    """带检测框的局部火花样本（宽 20 的方框，中心 cx）"""
    bbox = BoundingBox(int(cx - 10), 100, 20, 20)
    return point(t, candidate=True, bright_ratio=0.01, bright_delta=bright_delta,
                 bbox=bbox, center=bbox.center, area_ratio=area_ratio,
                 confidence=confidence)


def quiet(start, end):
    return [point(t) for t in range(start, end + 1, 100)]


class TestPulseStateMachine:
    """脉冲状态机测试类"""

    def setup_method(self):
        self.config = AlgorithmConfig()
        self.state = PulseStateMachine(self.config, fps=10)

    def test_derived_timings(self):
        assert self.state.max_pulse_ms == 1300
        assert self.state.abandon_ms == 2100
        assert self.state.cooldown_frames == pytest.approx(10.0)

    def test_idle_without_candidates(self):
        assert self.state.observe(point(0)) == PulseAction.NONE
        assert not self.state.is_open

    def test_confirm_after_max_pulse(self):
        assert self.state.observe(point(1000, candidate=True)) == PulseAction.NONE
        assert self.state.is_open
        assert self.state.pulse.start_ms == 1000

        assert self.state.observe(point(2200)) == PulseAction.NONE
        assert self.state.observe(point(2300)) == PulseAction.CONFIRM

        self.state.close()
        assert not self.state.is_open

    def test_abandon_after_silence(self):
        self.state.observe(point(1000, candidate=True))
        assert self.state.observe(point(3200)) == PulseAction.ABANDON

    def test_consecutive_hits_required(self):
        state = PulseStateMachine(AlgorithmConfig(require_consecutive_hits=2), fps=10)
        state.observe(point(0, candidate=True))
        assert not state.is_open
        state.observe(point(100, candidate=True))
        assert state.is_open
        assert state.pulse.start_ms == 100

    def test_strong_hit_opens_immediately(self):
        state = PulseStateMachine(AlgorithmConfig(require_consecutive_hits=3), fps=10)
        state.observe(point(0, candidate=True, mean_rise=6.0))
        assert state.is_open

    def test_cooldown_blocks_new_pulse(self):
        self.state.mark_event(10)
        self.state.observe(point(1500, candidate=True, frame_index=15))
        assert not self.state.is_open
        assert self.state.in_cooldown(19)

        self.state.observe(point(2000, candidate=True, frame_index=20))
        assert self.state.is_open

    def test_reset(self):
        self.state.mark_event(5)
        self.state.observe(point(0, candidate=True, frame_index=100))
        self.state.reset()
        assert not self.state.is_open
        assert self.state.last_event_frame is None


class TestSampleWindow:
    """滑动窗口测试类"""

    def test_trims_by_span(self):
        window = SampleWindow(max_ms=1000)
        for t in range(0, 2001, 100):
            window.append(point(t))
        assert window.samples()[0].time_ms == 1000
        assert window.span_ms == 1000

    def test_trim_to_recent(self):
        window = SampleWindow()
        for t in range(0, 4001, 100):
            window.append(point(t))
        window.trim_to_recent()
        assert [s.time_ms for s in window][0] == 2500
        assert len(window) == 16

    def test_clear(self):
        window = SampleWindow()
        window.append(point(0))
        window.clear()
        assert len(window) == 0
        assert window.span_ms == 0


class TestPulseConfirmer:
    """脉冲确认器测试类"""

    def setup_method(self):
        self.config = AlgorithmConfig()
        self.confirmer = PulseConfirmer(self.config)

    def global_flash(self):
        """背景 60，4000~4400ms 整体亮到 90"""
        samples = quiet(800, 3900)
        for t in range(4000, 4401, 100):
            samples.append(point(t, mean=90.0, candidate=True,
                                 mean_delta=30.0 if t == 4000 else 0.0, mean_rise=30.0))
        samples.append(point(4500, mean_delta=-30.0))
        samples.extend(quiet(4600, 5300))
        return samples

    def test_too_few_samples(self):
        decision = self.confirmer.confirm([point(0)])
        assert not decision.accepted
        assert decision.reason == "样本不足"

    def test_global_flash_is_flash(self):
        decision = self.confirmer.confirm(self.global_flash(), frame_width=320)

        assert decision.is_event
        assert decision.is_flash
        assert decision.peak_time_ms == 4000
        assert decision.bbox is None
        assert decision.confidence == pytest.approx(0.85)

    def test_peak_without_fall_is_rejected(self):
        samples = quiet(800, 3900)
        samples += [point(t, mean=100.0, candidate=True, mean_rise=40.0,
                          mean_delta=40.0 if t == 4000 else 0.0)
                    for t in range(4000, 5301, 100)]

        decision = self.confirmer.confirm(samples)
        assert not decision.is_event
        assert decision.reason == "无回落"

    def test_no_rise_is_rejected(self):
        decision = self.confirmer.confirm(quiet(0, 2000))
        assert not decision.accepted
        assert decision.reason == "无上升"

    def test_flickering_light_is_sustained(self):
        """2 秒以上反复高亮的光源被持续高亮抑制"""
        samples = quiet(0, 900)
        for t in range(1000, 3101, 100):
            if (t // 100) % 3 == 1:
                samples.append(point(t, mean=100.0, mean_rise=40.0 if t == 3100 else 30.0))
            else:
                samples.append(point(t))
        samples.append(point(3200))

        decision = self.confirmer.confirm(samples)
        assert decision.peak_time_ms == 3100
        assert decision.sustain_reject
        assert not decision.is_event

    def test_moving_light_is_rejected(self):
        """1 秒内横穿画面的光源判为移动光源"""
        samples = quiet(0, 1000)
        samples += [boxed(1100, 100, bright_delta=0.01), boxed(1200, 400), boxed(1300, 700)]
        samples += quiet(1400, 2400)

        decision = self.confirmer.confirm(samples, frame_width=1000)

        assert decision.accepted
        assert decision.motion_reject
        assert not decision.is_event
        assert decision.reason == "移动光源"

    def test_static_spark_is_accepted(self):
        samples = quiet(0, 1000)
        samples += [boxed(1100, 500, bright_delta=0.01), boxed(1200, 505), boxed(1300, 510)]
        samples += quiet(1400, 2400)

        decision = self.confirmer.confirm(samples, frame_width=1000)

        assert decision.is_event
        assert not decision.is_flash
        assert decision.peak_time_ms == 1100
        assert decision.bbox == BoundingBox(490, 100, 20, 20)
        assert decision.confidence == pytest.approx(0.46)

    def test_large_area_is_flash(self):
        samples = quiet(0, 1000)
        samples += [boxed(1100, 500, bright_delta=0.01, area_ratio=0.3)]
        samples += quiet(1200, 2400)

        decision = self.confirmer.confirm(samples, frame_width=1000)
        assert decision.is_event
        assert decision.is_flash

    def test_motion_width_fallback(self):
        """未提供画面宽度时由样本宽度与检测框右边界估计"""
        samples = [boxed(0, 100), boxed(100, 200), boxed(200, 300)]
        assert self.confirmer.check_motion(samples, 100)
        assert not self.confirmer.check_motion(samples, 100, frame_width=10000)

    def test_motion_needs_three_points(self):
        samples = [boxed(0, 100), boxed(100, 900)]
        assert not self.confirmer.check_motion(samples, 0, frame_width=1000)

    def test_peak_prefers_boxed_samples(self):
        samples = [point(0, mean_rise=50.0), boxed(100, 500), point(200)]
        assert self.confirmer.select_peak(samples) == 1

    def test_peak_tie_takes_first(self):
        samples = [point(0, mean_rise=10.0), point(100, mean_rise=10.0)]
        assert self.confirmer.select_peak(samples) == 0

    def test_local_baseline_fallbacks(self):
        samples = [point(0, mean=100.0), point(100, mean=80.0), point(200, mean=60.0)]
        # 峰值为第一个样本时退回最早的两个样本
        assert self.confirmer.local_baseline(samples, 0)[0] == pytest.approx(90.0)
