"""
长期基线模块

跟踪画面"正常"亮度水平：EWMA 与有界历史中位数的组合。
只用非候选、非脉冲期间的样本更新，避免被事件本身污染；
连续跳过过久时强制吸收，使永久性场景变化能重新锚定基线。
"""

from collections import deque
from typing import Deque, Optional, Tuple
import numpy as np

from models.data_models import SamplePoint


class RobustBaseline:
    """均值/高亮比例的鲁棒基线估计"""

    # 历史至少 3 个样本时用中位数，否则用 EWMA
    MEDIAN_MIN_SAMPLES = 3

    def __init__(self, history_size: int = 24, stale_samples: int = 24, alpha: float = 0.1):
        """
        Args:
            history_size: 历史窗口样本数
            stale_samples: 连续跳过超过该数量后强制吸收
            alpha: EWMA 平滑系数
        """
        self.alpha = alpha
        self.stale_samples = max(1, stale_samples)
        self._mean_history: Deque[float] = deque(maxlen=max(1, history_size))
        self._br_history: Deque[float] = deque(maxlen=max(1, history_size))
        self._ewma_mean: Optional[float] = None
        self._ewma_br: Optional[float] = None
        self._skipped = 0

    @classmethod
    def for_sample_rate(cls, sample_rate: float, seconds: float = 3.0) -> 'RobustBaseline':
        """按采样率创建：历史覆盖约 3 秒（至少 8 个样本）"""
        size = max(8, int(round(sample_rate * seconds)))
        return cls(history_size=size, stale_samples=size)

    @property
    def has_history(self) -> bool:
        return self._ewma_mean is not None

    @property
    def skipped(self) -> int:
        return self._skipped

    def level(self) -> Tuple[float, float]:
        """当前基线 (均值, 高亮比例)，无历史时返回 (0, 0)"""
        if not self.has_history:
            return 0.0, 0.0
        if len(self._mean_history) >= self.MEDIAN_MIN_SAMPLES:
            return float(np.median(self._mean_history)), float(np.median(self._br_history))
        return self._ewma_mean, self._ewma_br

    def rise(self, mean: float, bright_ratio: float) -> Tuple[float, float]:
        """相对基线的抬升量 (mean_rise, bright_rise)，无历史时为 0"""
        if not self.has_history:
            return 0.0, 0.0
        base_mean, base_br = self.level()
        return mean - base_mean, bright_ratio - base_br

    def update(self, sample: SamplePoint, pulse_active: bool = False) -> bool:
        """选择性更新

        Args:
            sample: 采样点
            pulse_active: 当前是否有进行中的脉冲

        Returns:
            bool: 样本被吸收返回 True
        """
        if sample.candidate or pulse_active:
            self._skipped += 1
            if self._skipped <= self.stale_samples:
                return False

        self._absorb(sample.mean, sample.bright_ratio)
        return True

    def _absorb(self, mean: float, bright_ratio: float) -> None:
        if self._ewma_mean is None:
            self._ewma_mean = mean
            self._ewma_br = bright_ratio
        else:
            self._ewma_mean += self.alpha * (mean - self._ewma_mean)
            self._ewma_br += self.alpha * (bright_ratio - self._ewma_br)

        self._mean_history.append(mean)
        self._br_history.append(bright_ratio)
        self._skipped = 0

    def reset(self) -> None:
        self._mean_history.clear()
        self._br_history.clear()
        self._ewma_mean = None
        self._ewma_br = None
        self._skipped = 0
