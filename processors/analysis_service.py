"""
分析任务服务模块

面向调用方的任务接口：创建任务、登记视频并入队、重新分析、查询结果。
"""

import os
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import logging

from models.data_models import (
    AlgorithmConfig, AnalysisEvent, FileStatus, Job, JobStatus, ReanalyzeResult,
    Snapshot, VideoFile
)
from models.interfaces import IAnalysisRepository, IProgressAggregator
from models.exceptions import SparkDetectionError
from processors.analysis_queue import AnalysisQueue
from storage.snapshot_store import SnapshotStore


AlgoParams = Union[None, str, Dict[str, Any], AlgorithmConfig]


class JobNotFoundError(SparkDetectionError):
    """任务不存在"""

    def __init__(self, job_id: int):
        super().__init__(f"任务不存在: {job_id}", "JOB_NOT_FOUND", "请确认任务 ID 是否正确")


class VideoAnalysisService:
    """视频分析任务服务"""

    def __init__(self, repository: IAnalysisRepository, queue: AnalysisQueue,
                 store: SnapshotStore, progress: IProgressAggregator):
        self.repository = repository
        self.queue = queue
        self.store = store
        self.progress = progress
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def normalize_algo_params(algo_params: AlgoParams) -> str:
        """把算法参数规范化为钳制后的 JSON 字符串"""
        if isinstance(algo_params, AlgorithmConfig):
            config = algo_params
        elif isinstance(algo_params, dict):
            config = AlgorithmConfig.from_dict(algo_params)
        else:
            config = AlgorithmConfig.from_json(algo_params)
        return config.to_json()

    def _require_job(self, job_id: int) -> Job:
        job = self.repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def create_job(self, algo_params: AlgoParams = None) -> Job:
        """创建分析任务

        Args:
            algo_params: 算法参数（字典、JSON 字符串或 AlgorithmConfig），非法值被钳制

        Returns:
            Job: 新任务
        """
        job_no = f"{datetime.now().strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:6]}"
        job = self.repository.add_job(Job(
            job_no=job_no,
            status=JobStatus.PENDING,
            algo_params_json=self.normalize_algo_params(algo_params)
        ))
        self.logger.info(f"创建任务 {job.job_no} (id={job.id})")
        return job

    def add_video(self, job_id: int, file_path: str,
                  cancel_event: Optional[threading.Event] = None) -> VideoFile:
        """登记视频并入队；任务已完成时重新回到处理中

        Raises:
            JobNotFoundError: 任务不存在
            SparkDetectionError: 任务已取消
            QueueClosedError: 队列已关闭
        """
        job = self._require_job(job_id)
        if job.status == JobStatus.CANCELLED:
            raise SparkDetectionError(f"任务已取消: {job.job_no}", "JOB_CANCELLED")

        files = self.repository.list_files(job_id)
        video_file = self.repository.add_file(VideoFile(
            job_id=job_id,
            file_name=os.path.basename(file_path),
            file_path=os.path.abspath(file_path),
            status=FileStatus.PENDING,
            seq_no=len(files) + 1
        ))

        job.total_video_count = len(files) + 1
        if job.status == JobStatus.DONE:
            job.status = JobStatus.PROCESSING
            job.finish_time = None
        self.repository.update_job(job)

        self.queue.enqueue(video_file.id, cancel_event)
        self.logger.info(f"任务 {job.job_no} 登记视频 #{video_file.seq_no}: {video_file.file_name}")
        return video_file

    def reanalyze_files(self, job_id: int, file_ids: Optional[List[int]] = None,
                        cancel_event: Optional[threading.Event] = None) -> ReanalyzeResult:
        """清空指定视频的事件与截图（含图片文件），重置为待处理并重新入队

        Args:
            job_id: 任务 ID
            file_ids: 视频 ID 列表，None 表示任务下全部视频

        Returns:
            ReanalyzeResult: 重新入队数量与清理数量
        """
        job = self._require_job(job_id)
        files = self.repository.list_files(job_id)
        if file_ids is not None:
            wanted = set(file_ids)
            files = [f for f in files if f.id in wanted]

        result = ReanalyzeResult()
        for video_file in files:
            for snapshot in self.repository.list_snapshots_by_confidence(video_file.id):
                self.store.delete(snapshot.image_path)
            events, snapshots = self.repository.delete_results_for_file(video_file.id)
            result.cleared_event_count += events
            result.cleared_snapshot_count += snapshots

            video_file.status = FileStatus.PENDING
            video_file.error_message = None
            video_file.event_count = None
            video_file.analyze_ms = None
            self.repository.update_file(video_file)

        if files:
            job.status = JobStatus.PROCESSING
            job.finish_time = None
            job.error_message = None
            self.repository.update_job(job)
            self.progress.update_job_progress(job_id)

        for video_file in files:
            self.queue.enqueue(video_file.id, cancel_event)
            result.requeued_count += 1

        self.logger.info(
            f"任务 {job.job_no} 重新分析 {result.requeued_count} 个视频，"
            f"清理事件 {result.cleared_event_count} 个、截图 {result.cleared_snapshot_count} 张"
        )
        return result

    def cancel_job(self, job_id: int) -> Job:
        """取消任务；尚未处理的视频出队后会被跳过"""
        job = self._require_job(job_id)
        if job.status not in (JobStatus.DONE, JobStatus.FAILED):
            job.status = JobStatus.CANCELLED
            job.finish_time = datetime.now()
            self.repository.update_job(job)
            self.logger.info(f"任务 {job.job_no} 已取消")
        return job

    def get_job(self, job_id: int) -> Optional[Job]:
        return self.repository.get_job(job_id)

    def get_files(self, job_id: int) -> List[VideoFile]:
        return self.repository.list_files(job_id)

    def get_events(self, file_id: int) -> List[AnalysisEvent]:
        return self.repository.list_events(file_id)

    def get_snapshots(self, file_id: int) -> List[Snapshot]:
        return self.repository.list_snapshots_by_confidence(file_id)
