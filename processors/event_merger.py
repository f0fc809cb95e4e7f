"""
事件合并模块

每个视频维护一个"打开"的事件槽：同类型且间隔不超过 merge_gap_sec 的
确认脉冲并入该事件，否则新建事件并成为新的打开事件。
更早的事件视为已定稿，不再合并。
"""

from typing import Optional, Tuple
import logging

from models.data_models import AnalysisEvent, BoundingBox, EventType
from models.interfaces import IAnalysisRepository


def ms_to_sec(time_ms: int) -> float:
    """毫秒转秒，保留毫秒精度"""
    return round(time_ms / 1000.0, 3)


class EventMerger:
    """单视频事件合并器"""

    def __init__(self, repository: IAnalysisRepository, merge_gap_sec: float):
        self.repository = repository
        self.merge_gap_sec = max(0.0, merge_gap_sec)
        self.logger = logging.getLogger(__name__)
        self.job_id = 0
        self.file_id = 0
        self.open_event: Optional[AnalysisEvent] = None
        self.next_seq = 1
        self.created_count = 0

    def reset(self, job_id: int, file_id: int, last_seq: int = 0) -> None:
        """切换到新视频：清空打开事件槽

        Args:
            job_id: 任务 ID
            file_id: 视频 ID
            last_seq: 该视频已有事件的最大序号（续跑时避免序号重复）
        """
        self.job_id = job_id
        self.file_id = file_id
        self.open_event = None
        self.next_seq = last_seq + 1
        self.created_count = 0

    def can_merge(self, event_type: EventType, time_sec: float) -> bool:
        event = self.open_event
        return (event is not None and
                event.file_id == self.file_id and
                event.event_type == event_type and
                time_sec - event.end_time_sec <= self.merge_gap_sec)

    def accept(self, event_type: EventType, time_sec: float, frame_index: int,
               confidence: float, bbox: Optional[BoundingBox]) -> Tuple[AnalysisEvent, bool]:
        """登记一个确认脉冲

        Returns:
            Tuple[AnalysisEvent, bool]: (已持久化的事件, 是否新建)
        """
        bbox_json = bbox.to_json() if bbox is not None else None

        if self.can_merge(event_type, time_sec):
            event = self.open_event
            event.end_time_sec = time_sec
            event.peak_time_sec = time_sec
            event.frame_index = frame_index
            event.confidence = max(event.confidence, confidence)
            if bbox_json is not None:
                event.bbox_json = bbox_json
            self.repository.update_event(event)
            self.logger.debug(f"事件 #{event.seq_no} 合并至 {time_sec:.3f}s，置信度 {event.confidence:.2f}")
            return event, False

        event = AnalysisEvent(
            job_id=self.job_id,
            file_id=self.file_id,
            event_type=event_type,
            start_time_sec=time_sec,
            end_time_sec=time_sec,
            peak_time_sec=time_sec,
            frame_index=frame_index,
            confidence=confidence,
            bbox_json=bbox_json,
            seq_no=self.next_seq
        )
        event = self.repository.add_event(event)
        self.open_event = event
        self.next_seq += 1
        self.created_count += 1
        self.logger.info(
            f"新事件 #{event.seq_no}: {event_type.label} t={time_sec:.3f}s conf={confidence:.2f}"
        )
        return event, True
