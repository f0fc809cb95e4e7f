"""
检测器模块

包含采样帧统计、长期基线、候选检测、脉冲状态机与脉冲确认。
"""

from .frame_statistics import PreparedFrame, prepare_frame, compute_statistics
from .baseline import RobustBaseline
from .candidate_detector import CandidateDetector
from .sample_window import SampleWindow
from .pulse_state import PulseAction, PulseStateMachine
from .pulse_confirmer import PulseConfirmer

__all__ = [
    'PreparedFrame',
    'prepare_frame',
    'compute_statistics',
    'RobustBaseline',
    'CandidateDetector',
    'SampleWindow',
    'PulseAction',
    'PulseStateMachine',
    'PulseConfirmer'
]
