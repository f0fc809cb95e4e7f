"""
单视频处理单元

驱动一个视频走完整条检测流水线：
顺序解码 -> 按目标帧率抽帧 -> 统计量 -> 候选检测 -> 滑动窗口 / 长期基线
-> 脉冲状态机 -> 脉冲确认 -> 事件合并 -> 截图保留 -> 硬性 Top-K 清理 -> 进度汇总。

事件与截图逐条提交，中途取消时已提交的结果保持不变，可通过重新分析重做。
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
import cv2
import numpy as np
import logging

from models.data_models import (
    AlgorithmConfig, FileResult, FileStatus, JobStatus, EventType, Job, VideoFile,
    PulseDecision
)
from models.interfaces import (
    IAnalysisRepository, IProgressAggregator, ISnapshotAnnotator, IVideoDecoder
)
from models.exceptions import DetectionError, OperationCancelledError
from detectors.frame_statistics import PreparedFrame, prepare_frame, compute_statistics
from detectors.baseline import RobustBaseline
from detectors.candidate_detector import CandidateDetector
from detectors.sample_window import SampleWindow
from detectors.pulse_state import PulseAction, PulseStateMachine
from detectors.pulse_confirmer import PulseConfirmer
from processors.event_merger import EventMerger, ms_to_sec
from processors.evidence import FrameRingBuffer, SnapshotRetention, DEFAULT_TOP_K
from processors.video_processor import VideoDecoder
from storage.snapshot_store import SnapshotStore
from visualizers.visualizer import SnapshotAnnotator
from utils.logger import log_performance, log_error


DEFAULT_FPS = 25
SKIPPED_JOB_STATUSES = (JobStatus.CANCELLED, JobStatus.DONE, JobStatus.FAILED)
TERMINAL_FILE_STATUSES = (FileStatus.DONE, FileStatus.FAILED)


def effective_fps(raw_fps: float) -> int:
    """取整后的视频帧率，未知时回退 25"""
    fps = int(round(raw_fps)) if raw_fps and raw_fps > 0 else 0
    return fps if fps > 0 else DEFAULT_FPS


def sample_every_frames(fps: int, sample_fps: int) -> int:
    """每隔多少帧取一个采样帧"""
    return max(1, int(round(fps / float(max(1, sample_fps)))))


@dataclass
class _VideoOutcome:
    event_count: int = 0
    snapshot_count: int = 0
    duration_sec: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    frames_decoded: int = 0
    frames_sampled: int = 0
    frames_skipped: int = 0


class _PerFileContext:
    """单个视频的私有检测状态，不跨视频共享"""

    def __init__(self, job: Job, video_file: VideoFile, algo: AlgorithmConfig, fps: int,
                 merger: EventMerger, retention: SnapshotRetention):
        self.job = job
        self.video_file = video_file
        self.algo = algo
        self.fps = fps
        self.sample_every = sample_every_frames(fps, algo.sample_fps)
        sample_rate = fps / float(self.sample_every)

        self.baseline = RobustBaseline.for_sample_rate(sample_rate)
        self.detector = CandidateDetector(algo)
        self.window = SampleWindow()
        self.state = PulseStateMachine(algo, fps)
        self.confirmer = PulseConfirmer(algo)
        self.ring = FrameRingBuffer.for_sample_rate(sample_rate)
        self.merger = merger
        self.retention = retention
        self.prev: Optional[PreparedFrame] = None


class SparkDetectionService:
    """单视频闪光/火花检测处理单元"""

    def __init__(self, repository: IAnalysisRepository,
                 progress: IProgressAggregator,
                 store: SnapshotStore,
                 annotator: Optional[ISnapshotAnnotator] = None,
                 decoder_factory: Callable[[str], IVideoDecoder] = VideoDecoder,
                 top_k: int = DEFAULT_TOP_K):
        """
        Args:
            repository: 结果仓储
            progress: 任务进度汇总
            store: 截图文件存储
            annotator: 截图标注器，默认 SnapshotAnnotator
            decoder_factory: 按文件路径创建解码器
            top_k: 每个视频保留的截图数量
        """
        self.repository = repository
        self.progress = progress
        self.store = store
        self.annotator = annotator or SnapshotAnnotator()
        self.decoder_factory = decoder_factory
        self.top_k = top_k
        self.logger = logging.getLogger(__name__)

    def process_file(self, file_id: int,
                     cancel_event: Optional[threading.Event] = None) -> FileResult:
        """处理一个视频

        Args:
            file_id: 视频 ID
            cancel_event: 协作式取消信号，每个解码帧检查一次

        Returns:
            FileResult: 处理结果；被幂等保护跳过时 skipped 为 True

        Raises:
            OperationCancelledError: 处理过程中收到取消信号
            VideoProcessingError: 视频无法打开或解码（文件已标记失败）
        """
        video_file = self.repository.get_file(file_id)
        if video_file is None:
            self.logger.warning(f"视频不存在，跳过: {file_id}")
            return FileResult(file_id=file_id, skipped=True)

        job = self.repository.get_job(video_file.job_id)
        if job is None or job.status in SKIPPED_JOB_STATUSES:
            status = job.status.name if job else "不存在"
            self.logger.info(f"任务状态为 {status}，跳过视频 {file_id}")
            return FileResult(file_id=file_id, status=video_file.status, skipped=True)

        if video_file.status in TERMINAL_FILE_STATUSES:
            self.logger.info(f"视频 {file_id} 已处于终态 {video_file.status.name}，跳过")
            return FileResult(file_id=file_id, status=video_file.status, skipped=True)

        algo = AlgorithmConfig.from_json(job.algo_params_json)

        video_file.status = FileStatus.PROCESSING
        video_file.error_message = None
        self.repository.update_file(video_file)
        if job.status == JobStatus.PENDING:
            job.status = JobStatus.PROCESSING
            job.start_time = datetime.now()
            self.repository.update_job(job)

        self.logger.info(f"开始分析视频 {file_id}: {video_file.file_path}")
        start_time = time.time()
        try:
            outcome = self._analyze(job, video_file, algo, cancel_event)
            analyze_ms = int((time.time() - start_time) * 1000)
            self._complete(video_file, outcome, analyze_ms)
        except OperationCancelledError:
            self.logger.info(f"视频 {file_id} 分析被取消，保留已提交结果")
            raise
        except Exception as e:
            analyze_ms = int((time.time() - start_time) * 1000)
            self._fail(video_file, e, analyze_ms)
            raise

        self._notify_progress(job.id)
        log_performance(
            "视频分析", analyze_ms / 1000.0,
            file_id=file_id,
            event_count=outcome.event_count,
            snapshot_count=outcome.snapshot_count,
            frames_decoded=outcome.frames_decoded,
            frames_sampled=outcome.frames_sampled,
            frames_skipped=outcome.frames_skipped
        )
        return FileResult(
            file_id=file_id,
            status=FileStatus.DONE,
            event_count=outcome.event_count,
            snapshot_count=outcome.snapshot_count,
            duration_sec=outcome.duration_sec,
            width=outcome.width,
            height=outcome.height,
            analyze_ms=analyze_ms
        )

    def _complete(self, video_file: VideoFile, outcome: _VideoOutcome, analyze_ms: int) -> None:
        video_file.status = FileStatus.DONE
        video_file.event_count = outcome.event_count
        video_file.analyze_ms = analyze_ms
        video_file.duration_sec = outcome.duration_sec
        video_file.width = outcome.width
        video_file.height = outcome.height
        self.repository.update_file(video_file)
        self.logger.info(
            f"视频 {video_file.id} 分析完成: 事件 {outcome.event_count} 个, "
            f"截图 {outcome.snapshot_count} 张, 耗时 {analyze_ms}ms"
        )

    def _fail(self, video_file: VideoFile, error: Exception, analyze_ms: int) -> None:
        """标记失败并汇总进度（终态更新在此重试一次）"""
        video_file.status = FileStatus.FAILED
        video_file.error_message = str(error)[:1000]
        video_file.analyze_ms = analyze_ms
        try:
            self.repository.update_file(video_file)
        except Exception as e:
            log_error(e, "标记视频失败状态", file_id=video_file.id)
        self._notify_progress(video_file.job_id)

    def _notify_progress(self, job_id: int) -> None:
        try:
            self.progress.update_job_progress(job_id)
        except Exception as e:
            log_error(e, "任务进度汇总", job_id=job_id)

    def _analyze(self, job: Job, video_file: VideoFile, algo: AlgorithmConfig,
                 cancel_event: Optional[threading.Event]) -> _VideoOutcome:
        decoder = self.decoder_factory(video_file.file_path)
        try:
            info = decoder.get_video_info()
            fps = effective_fps(info.fps)

            merger = EventMerger(self.repository, algo.merge_gap_sec)
            existing_events = self.repository.list_events(video_file.id)
            merger.reset(job.id, video_file.id, max([e.seq_no for e in existing_events] + [0]))

            retention = SnapshotRetention(self.repository, self.store, self.annotator, self.top_k)
            retention.start_file(video_file.id)

            ctx = _PerFileContext(job, video_file, algo, fps, merger, retention)
            outcome = _VideoOutcome(
                width=info.width or None,
                height=info.height or None,
                duration_sec=(int(round(info.frame_count / info.fps))
                              if info.frame_count > 0 and info.fps > 0 else None)
            )
            self.logger.debug(
                f"视频 {video_file.id}: fps={fps}, 每 {ctx.sample_every} 帧采样, "
                f"尺寸={info.width}x{info.height}"
            )

            frame_index = -1
            for ok, frame in decoder.read_frames():
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(f"视频 {video_file.id} 第 {frame_index + 1} 帧")

                frame_index += 1
                outcome.frames_decoded += 1
                if not ok or frame is None or frame.size == 0:
                    outcome.frames_skipped += 1
                    continue

                if ctx.prev is None:
                    ctx.prev = self._prepare_or_skip(frame, algo, frame_index, outcome)
                    if outcome.width is None:
                        outcome.width, outcome.height = int(frame.shape[1]), int(frame.shape[0])
                    continue

                if frame_index % ctx.sample_every != 0:
                    continue

                outcome.frames_sampled += 1
                self._process_sample(ctx, frame, frame_index, outcome)

            removed = self._enforce_top_k(retention, video_file.id)
            outcome.event_count = len(self.repository.list_events(video_file.id))
            outcome.snapshot_count = len(self.repository.list_snapshots_by_confidence(video_file.id))
            if removed:
                self.logger.debug(f"视频 {video_file.id} 结束清理截图 {removed} 张")
            return outcome
        finally:
            decoder.release_resources()

    def _prepare_or_skip(self, frame: np.ndarray, algo: AlgorithmConfig, frame_index: int,
                         outcome: _VideoOutcome) -> Optional[PreparedFrame]:
        try:
            return prepare_frame(frame, algo)
        except (cv2.error, ValueError) as e:
            outcome.frames_skipped += 1
            self.logger.warning(str(DetectionError(frame_index, str(e))))
            return None

    def _process_sample(self, ctx: _PerFileContext, frame: np.ndarray, frame_index: int,
                        outcome: _VideoOutcome) -> None:
        """处理一个采样帧；单帧异常只跳过该帧"""
        time_ms = int(round(frame_index * 1000.0 / ctx.fps))
        try:
            curr = prepare_frame(frame, ctx.algo)
            stats = compute_statistics(ctx.prev, curr, ctx.algo, ctx.baseline, frame_index, time_ms)
            candidate = ctx.detector.detect(ctx.prev, curr, stats)
        except (cv2.error, ValueError) as e:
            outcome.frames_skipped += 1
            self.logger.warning(str(DetectionError(frame_index, str(e))))
            return

        ctx.ring.add(time_ms, frame_index, frame)
        ctx.ring.trim_by_time()

        stats.candidate = candidate.is_candidate
        if candidate.is_candidate and candidate.bbox is not None:
            stats.bbox = candidate.bbox
            stats.area_ratio = candidate.area_ratio
            stats.confidence = candidate.confidence
            stats.center = candidate.center

        ctx.window.append(stats)
        ctx.baseline.update(stats, pulse_active=ctx.state.is_open)

        action = ctx.state.observe(stats)
        if action == PulseAction.ABANDON:
            self.logger.debug(f"脉冲超时放弃 @ {time_ms}ms")
        elif action == PulseAction.CONFIRM:
            decision = ctx.confirmer.confirm(ctx.window.samples(), ctx.state.max_pulse_ms,
                                             curr.orig_width)
            if decision.is_event:
                self._record_event(ctx, decision, frame, frame_index)
            else:
                self.logger.debug(f"脉冲未确认 @ {time_ms}ms: {decision.reason}")

        if action != PulseAction.NONE:
            ctx.state.close()
            ctx.window.trim_to_recent()

        ctx.prev = curr

    def _record_event(self, ctx: _PerFileContext, decision: PulseDecision,
                      frame: np.ndarray, frame_index: int) -> None:
        """确认脉冲 -> 事件合并 -> 截图保留 -> 冷却锚点"""
        peak_frame = ctx.ring.nearest(decision.peak_time_ms)
        if peak_frame is not None:
            snap_time_ms, snap_index, image = peak_frame.time_ms, peak_frame.frame_index, peak_frame.frame
        else:
            snap_time_ms, snap_index, image = decision.peak_time_ms, frame_index, frame

        time_sec = ms_to_sec(snap_time_ms)
        event_type = EventType.FLASH if decision.is_flash else EventType.SPARK
        ctx.state.mark_event(snap_index)

        try:
            event, _ = ctx.merger.accept(event_type, time_sec, snap_index,
                                         decision.confidence, decision.bbox)
        except Exception as e:
            log_error(e, "写入事件", file_id=ctx.video_file.id, time_sec=time_sec)
            return

        try:
            ctx.retention.retain(ctx.job.job_no, ctx.video_file.id, event.id, image,
                                 event_type, time_sec, snap_index, decision.confidence,
                                 decision.bbox)
        except Exception as e:
            log_error(e, "写入截图", file_id=ctx.video_file.id, event_id=event.id)

    def _enforce_top_k(self, retention: SnapshotRetention, file_id: int) -> int:
        try:
            return retention.enforce_limit(file_id)
        except Exception as e:
            log_error(e, "硬性 Top-K 清理", file_id=file_id)
            return 0
