"""
脉冲状态机模块

把连续的候选帧累积为一个进行中的脉冲（idle -> pending），
超时放弃或观察期满后触发确认，随后回到 idle。
"""

from enum import Enum
from typing import Optional

from models.data_models import AlgorithmConfig, PendingPulse, SamplePoint


class PulseAction(Enum):
    """单次观察后的动作"""
    NONE = "none"
    ABANDON = "abandon"
    CONFIRM = "confirm"


class PulseStateMachine:
    """单个视频的脉冲状态机（同一时刻最多一个进行中的脉冲）"""

    def __init__(self, config: AlgorithmConfig, fps: float):
        """
        Args:
            config: 算法参数
            fps: 视频帧率，用于把冷却秒数换算为帧数
        """
        self.config = config
        self.fps = fps
        self.pulse = PendingPulse()
        self.last_event_frame: Optional[int] = None

        self.max_pulse_ms = config.max_pulse_ms
        self.abandon_ms = max(1500, self.max_pulse_ms + 800)
        self.cooldown_frames = config.cooldown_sec * fps

    @property
    def is_open(self) -> bool:
        return self.pulse.open

    def is_strong(self, sample: SamplePoint) -> bool:
        """强命中：抬升量达到阈值的 90%，允许单帧直接开启脉冲"""
        cfg = self.config
        return (sample.mean_rise >= 0.9 * cfg.mean_delta_rise or
                sample.bright_rise >= 0.9 * cfg.bright_ratio_delta)

    def in_cooldown(self, frame_index: int) -> bool:
        if self.last_event_frame is None:
            return False
        return frame_index - self.last_event_frame < self.cooldown_frames

    def observe(self, sample: SamplePoint) -> PulseAction:
        """观察一个采样点并返回需要执行的动作

        动作为 ABANDON 或 CONFIRM 时，调用方处理完成后必须调用 close()。
        """
        now = sample.time_ms
        pulse = self.pulse

        if sample.candidate:
            pulse.hits += 1
            qualifies = (pulse.hits >= self.config.require_consecutive_hits or
                         self.is_strong(sample))
            if qualifies and not self.in_cooldown(sample.frame_index):
                if not pulse.open:
                    pulse.open = True
                    pulse.start_ms = now
                pulse.last_hit_ms = now
        else:
            pulse.hits = max(0, pulse.hits - 1)

        if not pulse.open:
            return PulseAction.NONE
        if now - pulse.last_hit_ms > self.abandon_ms:
            return PulseAction.ABANDON
        if now - pulse.start_ms >= self.max_pulse_ms:
            return PulseAction.CONFIRM
        return PulseAction.NONE

    def close(self) -> None:
        self.pulse = PendingPulse()

    def mark_event(self, frame_index: int) -> None:
        """记录冷却锚点（确认事件的代表帧）"""
        self.last_event_frame = frame_index

    def reset(self) -> None:
        self.close()
        self.last_event_frame = None
