"""
任务进度汇总模块

每个视频到达终态后重新统计任务的完成/失败数量、进度与事件总数。
"""

from datetime import datetime
import logging

from models.data_models import FileStatus, JobStatus
from models.interfaces import IAnalysisRepository, IProgressAggregator


class JobProgressAggregator(IProgressAggregator):
    """按视频状态重新计算任务汇总字段"""

    def __init__(self, repository: IAnalysisRepository):
        self.repository = repository
        self.logger = logging.getLogger(__name__)

    def update_job_progress(self, job_id: int) -> None:
        job = self.repository.get_job(job_id)
        if job is None:
            self.logger.warning(f"汇总进度时任务不存在: {job_id}")
            return

        files = self.repository.list_files(job_id)
        total = max(job.total_video_count, len(files))
        finished = sum(1 for f in files if f.status == FileStatus.DONE)
        failed = sum(1 for f in files if f.status == FileStatus.FAILED)

        job.total_video_count = total
        job.finished_video_count = finished
        job.failed_video_count = failed
        job.total_event_count = self.repository.count_events(job_id)
        job.progress = int(round(finished * 100.0 / total)) if total > 0 else 0

        if total > 0 and finished + failed >= total and job.status != JobStatus.CANCELLED:
            job.status = JobStatus.DONE
            job.finish_time = datetime.now()
            job.error_message = f"{failed} 个视频分析失败" if failed else None

        self.repository.update_job(job)
        self.logger.info(
            f"任务 {job.job_no} 进度: {job.progress}% "
            f"(完成 {finished} / 失败 {failed} / 共 {total}, 事件 {job.total_event_count})"
        )
