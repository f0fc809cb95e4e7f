"""
核心数据模型定义

包含系统中使用的核心数据类、算法参数和持久化实体模型。
"""

import json
import math
import re
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from enum import IntEnum
from typing import List, Optional, Dict, Any, Tuple


@dataclass
class Config:
    """应用配置数据类

    包含所有应用级配置参数，支持从配置文件和命令行参数加载。
    算法参数以原始字典形式保存，由 AlgorithmConfig 负责校验。
    """
    video_paths: List[str] = field(default_factory=list)
    snapshot_root: str = "output"
    results_path: Optional[str] = None
    queue_capacity: int = 1000
    dequeue_error_backoff_ms: int = 500
    algorithm: Dict[str, Any] = field(default_factory=dict)
    log_level: str = "INFO"
    log_file_path: Optional[str] = None
    enable_console_log: bool = True


# 字段名 -> (类型, 默认值, 下限, 上限)
_ALGO_SPEC: Dict[str, Tuple[type, float, float, float]] = {
    'sample_fps': (int, 8, 1, 60),
    'diff_threshold': (int, 35, 1, 255),
    'diff_threshold_min': (int, 12, 0, 255),
    'adaptive_diff_k': (float, 2.2, 0.0, 10.0),
    'min_contour_area': (float, 60.0, 1.0, 2000.0),
    'mean_delta_rise': (float, 6.0, 0.1, 50.0),
    'mean_delta_fall': (float, 4.0, 0.1, 50.0),
    'bright_std_k': (float, 2.0, 0.0, 10.0),
    'bright_thr_min': (int, 170, 0, 255),
    'bright_thr_max': (int, 250, 0, 255),
    'bright_ratio_delta': (float, 0.0012, 0.0001, 0.01),
    'flash_area_ratio': (float, 0.22, 0.0, 1.0),
    'global_brightness_delta': (float, 12.0, 0.5, 100.0),
    'max_pulse_sec': (float, 1.3, 0.1, 10.0),
    'sustain_reject_sec': (float, 2.0, 0.1, 30.0),
    'resize_max_width': (int, 640, 0, 3840),
    'blur_kernel': (int, 5, 0, 31),
    'require_consecutive_hits': (int, 1, 1, 10),
    'cooldown_sec': (float, 1.0, 0.0, 30.0),
    'merge_gap_sec': (float, 2.0, 0.0, 30.0),
    'max_motion_ratio_per_sec': (float, 0.12, 0.01, 1.0),
}


def _to_snake_case(key: str) -> str:
    """SampleFps / sampleFps -> sample_fps"""
    return re.sub(r'(?<!^)(?=[A-Z])', '_', key).lower()


def _sanitize(name: str, value: Any) -> Any:
    """把单个参数值转换为合法值，无法解析时回退默认值"""
    kind, default, low, high = _ALGO_SPEC[name]
    if isinstance(value, bool) or value is None:
        number = float(default)
    else:
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            number = float(default)
    if math.isnan(number) or math.isinf(number):
        number = float(default)

    number = min(max(number, low), high)
    if kind is int:
        return int(round(number))
    return number


@dataclass
class AlgorithmConfig:
    """闪光/火花检测算法参数

    针对"非饱和闪光 + 1 秒内出现-消失"的场景调优。
    构造时对每个字段做钳制，非法或缺失的值回退到默认值，永不抛出异常。
    """
    # 抽帧
    sample_fps: int = 8

    # diff/轮廓候选
    diff_threshold: int = 35
    diff_threshold_min: int = 12
    adaptive_diff_k: float = 2.2
    min_contour_area: float = 60.0

    # 全局亮度突变（主信号）
    mean_delta_rise: float = 6.0
    mean_delta_fall: float = 4.0

    # 动态高亮比例：阈值 = mean + K*std，再钳制到 [min, max]
    bright_std_k: float = 2.0
    bright_thr_min: int = 170
    bright_thr_max: int = 250
    bright_ratio_delta: float = 0.0012

    # 闪光/火花判别辅助
    flash_area_ratio: float = 0.22
    global_brightness_delta: float = 12.0

    # 脉冲时序
    max_pulse_sec: float = 1.3
    sustain_reject_sec: float = 2.0

    # 预处理
    resize_max_width: int = 640
    blur_kernel: int = 5

    # 抑制策略
    require_consecutive_hits: int = 1
    cooldown_sec: float = 1.0
    merge_gap_sec: float = 2.0
    max_motion_ratio_per_sec: float = 0.12

    def __post_init__(self) -> None:
        for f in fields(self):
            setattr(self, f.name, _sanitize(f.name, getattr(self, f.name)))

        if self.bright_thr_max < self.bright_thr_min:
            self.bright_thr_max = self.bright_thr_min
        if self.blur_kernel > 1 and self.blur_kernel % 2 == 0:
            self.blur_kernel += 1

    @property
    def effective_blur_kernel(self) -> int:
        """实际使用的模糊核大小，0 表示不做模糊"""
        return self.blur_kernel if self.blur_kernel >= 3 else 0

    @property
    def max_pulse_ms(self) -> int:
        """脉冲观察期（毫秒），至少 900ms"""
        return int(math.ceil(max(900.0, self.max_pulse_sec * 1000.0)))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AlgorithmConfig':
        """从扁平键值对创建参数对象

        同时接受 snake_case 与 PascalCase 键名，未知键忽略。

        Args:
            data: 参数字典

        Returns:
            AlgorithmConfig: 校验后的参数对象
        """
        if not isinstance(data, dict):
            return cls()

        kwargs = {}
        for key, value in data.items():
            if not isinstance(key, str):
                continue
            name = _to_snake_case(key)
            if name in _ALGO_SPEC:
                kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_json(cls, text: Optional[str]) -> 'AlgorithmConfig':
        """从 JSON 字符串创建参数对象，空串或格式错误时返回默认参数"""
        if not text or not str(text).strip():
            return cls()
        try:
            data = json.loads(text)
        except (TypeError, ValueError, RecursionError):
            return cls()
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class VideoInfo:
    """视频信息数据类

    包含视频文件的基本信息，如分辨率、帧率、时长等。
    """
    width: int
    height: int
    fps: float
    frame_count: int
    duration: float
    codec: str


@dataclass
class BoundingBox:
    """边界框（原图坐标，左上角 + 宽高）"""
    x: int
    y: int
    w: int
    h: int

    @property
    def is_valid(self) -> bool:
        return self.w > 0 and self.h > 0

    @property
    def area(self) -> int:
        return max(0, self.w) * max(0, self.h)

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.w / 2.0, self.y + self.h / 2.0)

    def to_xyxy(self) -> List[float]:
        return [float(self.x), float(self.y), float(self.x + self.w), float(self.y + self.h)]

    def to_dict(self) -> Dict[str, int]:
        return {'x': int(self.x), 'y': int(self.y), 'w': int(self.w), 'h': int(self.h)}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class SamplePoint:
    """采样点

    每个采样帧生成一个，只存活于滑动窗口内。
    bbox / center 一律为原图坐标。
    """
    frame_index: int
    time_ms: int
    mean: float = 0.0
    std: float = 0.0
    bright_ratio: float = 0.0
    mean_delta: float = 0.0      # mean_curr - mean_prev
    bright_delta: float = 0.0    # br_curr - br_prev
    mean_rise: float = 0.0       # 相对长期基线的均值抬升
    bright_rise: float = 0.0     # 相对长期基线的高亮比例抬升
    candidate: bool = False
    bbox: Optional[BoundingBox] = None
    area_ratio: float = 0.0
    confidence: float = 0.0
    center: Optional[Tuple[float, float]] = None
    frame_width: int = 0

    @property
    def has_bbox(self) -> bool:
        return self.bbox is not None and self.bbox.is_valid


@dataclass
class CandidateResult:
    """候选检测结果"""
    is_candidate: bool
    bbox: Optional[BoundingBox] = None
    area_ratio: float = 0.0
    confidence: float = 0.0
    center: Optional[Tuple[float, float]] = None


@dataclass
class PendingPulse:
    """进行中的脉冲（每个视频同时最多一个）"""
    open: bool = False
    start_ms: int = 0
    last_hit_ms: int = 0
    hits: int = 0


@dataclass
class PulseDecision:
    """脉冲确认结果"""
    accepted: bool
    is_flash: bool = False
    confidence: float = 0.0
    bbox: Optional[BoundingBox] = None
    peak_time_ms: int = 0
    peak: Optional[SamplePoint] = None
    sustain_reject: bool = False
    motion_reject: bool = False
    reason: str = ""

    @property
    def is_event(self) -> bool:
        """只有被接受且两个抑制标志都为假的脉冲才生成事件"""
        return self.accepted and not self.sustain_reject and not self.motion_reject


class FileStatus(IntEnum):
    """视频处理状态"""
    PENDING = 0
    PROCESSING = 1
    DONE = 2
    FAILED = 3


class JobStatus(IntEnum):
    """任务状态"""
    PENDING = 0
    PROCESSING = 1
    DONE = 2
    FAILED = 3
    CANCELLED = 4


class EventType(IntEnum):
    """事件类型：1=闪光，2=火花"""
    FLASH = 1
    SPARK = 2

    @property
    def label(self) -> str:
        return "FLASH" if self is EventType.FLASH else "SPARK"


@dataclass
class Job:
    """视频分析任务（多视频闪光/火花检测）"""
    id: int = 0
    job_no: str = ""
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    algo_params_json: Optional[str] = None
    total_video_count: int = 0
    finished_video_count: int = 0
    failed_video_count: int = 0
    total_event_count: int = 0
    error_message: Optional[str] = None
    start_time: Optional[datetime] = None
    finish_time: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class VideoFile:
    """任务关联的视频文件"""
    id: int = 0
    job_id: int = 0
    file_name: str = ""
    file_path: str = ""
    status: FileStatus = FileStatus.PENDING
    error_message: Optional[str] = None
    event_count: Optional[int] = None
    analyze_ms: Optional[int] = None
    duration_sec: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    seq_no: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class AnalysisEvent:
    """闪光/火花识别事件

    同类型且间隔不超过 merge_gap_sec 的脉冲会合并到同一事件：
    结束/峰值时间后移，置信度只增不减。
    """
    id: int = 0
    job_id: int = 0
    file_id: int = 0
    event_type: EventType = EventType.SPARK
    start_time_sec: float = 0.0
    end_time_sec: float = 0.0
    peak_time_sec: float = 0.0
    frame_index: int = 0
    confidence: float = 0.0
    bbox_json: Optional[str] = None
    seq_no: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class Snapshot:
    """事件截图（已画框，人工复核用），每个视频最多保留 K 张"""
    id: int = 0
    file_id: int = 0
    event_id: int = 0
    image_path: str = ""
    time_sec: float = 0.0
    frame_index: int = 0
    image_width: int = 0
    image_height: int = 0
    confidence: float = 0.0
    seq_no: int = 0
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class FileResult:
    """单个视频处理结果"""
    file_id: int
    status: Optional[FileStatus] = None
    skipped: bool = False
    event_count: int = 0
    snapshot_count: int = 0
    duration_sec: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    analyze_ms: int = 0


@dataclass
class ReanalyzeResult:
    """重新分析结果"""
    requeued_count: int = 0
    cleared_event_count: int = 0
    cleared_snapshot_count: int = 0
