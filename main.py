#!/usr/bin/env python3
"""
视频闪光/火花检测服务主程序

把命令行/配置文件指定的视频登记为一个分析任务，由后台工作线程逐个分析，
输出事件、截图与统计信息，可选导出 JSON 结果。
"""

import sys
import os
import json
import time
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

# 添加项目根目录到 Python 路径
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from utils.config_manager import ConfigManager
from utils.logger import (
    configure_logging, get_logger, log_system_startup,
    log_performance, log_error, logger_manager
)
from utils.performance import MemoryMonitor, ThroughputTracker
from models.data_models import Config, FileStatus, Job
from models.exceptions import ConfigurationError, SparkDetectionError
from processors.analysis_queue import AnalysisQueue
from processors.analysis_service import VideoAnalysisService
from processors.analysis_worker import AnalysisWorker
from processors.spark_detection_service import SparkDetectionService
from storage.memory_repository import InMemoryAnalysisRepository
from storage.progress import JobProgressAggregator
from storage.snapshot_store import SnapshotStore
from visualizers.visualizer import SnapshotAnnotator


EXIT_OK = 0
EXIT_UNKNOWN = 1
EXIT_CONFIG_ERROR = 2
EXIT_VIDEO_ERROR = 4
EXIT_INTERRUPTED = 130


class SparkDetectionApp:
    """闪光/火花检测应用主类

    流程：配置加载 -> 组件装配 -> 创建任务并登记视频 -> 后台分析 -> 统计与导出。
    """

    def __init__(self):
        self.config: Optional[Config] = None
        self.repository: Optional[InMemoryAnalysisRepository] = None
        self.queue: Optional[AnalysisQueue] = None
        self.worker: Optional[AnalysisWorker] = None
        self.analysis_service: Optional[VideoAnalysisService] = None
        self.tracker = ThroughputTracker()
        self.job: Optional[Job] = None

        configure_logging(log_level="INFO", enable_console=True)
        self.logger = get_logger(__name__)

    def setup_logging(self, config: Config) -> None:
        """按配置重新设置日志系统"""
        configure_logging(
            log_level=config.log_level,
            log_file_path=config.log_file_path,
            enable_console=config.enable_console_log
        )
        log_system_startup()
        logging.getLogger('cv2').setLevel(logging.WARNING)

    def initialize_components(self, config_path: Optional[str] = None,
                              args: Optional[list] = None) -> None:
        """加载配置并装配各组件

        Raises:
            ConfigurationError: 配置加载失败
        """
        init_start_time = time.time()
        self.config = ConfigManager(config_path, args).load_config()
        self.setup_logging(self.config)
        logger_manager.log_config_info(asdict(self.config))

        self.repository = InMemoryAnalysisRepository()
        store = SnapshotStore(self.config.snapshot_root)
        progress = JobProgressAggregator(self.repository)
        self.queue = AnalysisQueue(capacity=self.config.queue_capacity)

        service = SparkDetectionService(
            repository=self.repository,
            progress=progress,
            store=store,
            annotator=SnapshotAnnotator()
        )
        self.worker = AnalysisWorker(
            queue=self.queue,
            service=service,
            dequeue_error_backoff_ms=self.config.dequeue_error_backoff_ms,
            memory_monitor=MemoryMonitor(),
            tracker=self.tracker
        )
        self.analysis_service = VideoAnalysisService(self.repository, self.queue, store, progress)

        log_performance("组件初始化", time.time() - init_start_time,
                        视频数=len(self.config.video_paths),
                        队列容量=self.config.queue_capacity)

    def run_analysis(self) -> None:
        """创建任务、登记全部视频，并等待队列处理完毕"""
        self.job = self.analysis_service.create_job(self.config.algorithm)
        self.worker.start()

        for path in self.config.video_paths:
            self.analysis_service.add_video(self.job.id, path)
        self.queue.close()

        # 分段等待，主线程可以及时响应 Ctrl+C
        while not self.worker.join(timeout=0.5):
            pass

        self.job = self.repository.get_job(self.job.id)

    def collect_results(self) -> Dict[str, Any]:
        """汇总任务、视频、事件与截图记录"""
        files = []
        for video_file in self.analysis_service.get_files(self.job.id):
            entry = asdict(video_file)
            entry['events'] = [asdict(e) for e in self.analysis_service.get_events(video_file.id)]
            entry['snapshots'] = [asdict(s) for s in self.analysis_service.get_snapshots(video_file.id)]
            files.append(entry)
        return {
            'job': asdict(self.job),
            'algorithm': json.loads(self.job.algo_params_json or "{}"),
            'files': files,
            'stats': self.tracker.get_stats()
        }

    def save_results(self, path: str) -> None:
        results = self.collect_results()
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(results, f, ensure_ascii=False, indent=2, default=str)
        self.logger.info(f"分析结果已保存: {path}")

    def print_statistics(self) -> None:
        if self.job is None:
            return
        stats = self.tracker.get_stats()

        print("\n" + "=" * 50)
        print("分析统计信息")
        print("=" * 50)
        print(f"任务编号: {self.job.job_no}")
        print(f"视频总数: {self.job.total_video_count}")
        print(f"完成/失败: {self.job.finished_video_count} / {self.job.failed_video_count}")
        print(f"事件总数: {self.job.total_event_count}")
        print(f"处理时间: {stats['elapsed_sec']:.2f} 秒")
        print(f"平均单视频耗时: {stats['average_analyze_ms']:.0f} 毫秒")
        for video_file in self.analysis_service.get_files(self.job.id):
            line = f"  [{video_file.status.name}] {video_file.file_name}"
            if video_file.status == FileStatus.DONE:
                line += f" 事件 {video_file.event_count} 个"
            elif video_file.error_message:
                line += f" {video_file.error_message.splitlines()[0]}"
            print(line)
            for event in self.analysis_service.get_events(video_file.id):
                print(f"      #{event.seq_no} {event.event_type.label} "
                      f"{event.start_time_sec:.2f}s-{event.end_time_sec:.2f}s "
                      f"conf={event.confidence:.2f}")
        print("=" * 50)

    def cleanup(self) -> None:
        if self.queue is not None:
            self.queue.close()
        if self.worker is not None and self.worker.is_running():
            self.worker.stop()

    def run(self, config_path: Optional[str] = None, args: Optional[list] = None) -> int:
        """运行应用程序

        Returns:
            int: 退出代码 (0 成功, 2 配置错误, 4 有视频分析失败, 130 用户中断)
        """
        try:
            self.initialize_components(config_path, args)
            self.run_analysis()
            self.print_statistics()
            if self.config.results_path:
                self.save_results(self.config.results_path)

            if self.job is not None and self.job.failed_video_count > 0:
                return EXIT_VIDEO_ERROR
            return EXIT_OK

        except ConfigurationError as e:
            self.logger.error(f"配置错误: {str(e)}")
            return EXIT_CONFIG_ERROR
        except KeyboardInterrupt:
            self.logger.info("程序被用户中断")
            return EXIT_INTERRUPTED
        except SparkDetectionError as e:
            log_error(e, "分析任务执行失败")
            return EXIT_UNKNOWN
        except Exception as e:
            log_error(e, "未知错误")
            return EXIT_UNKNOWN
        finally:
            self.cleanup()


def main():
    app = SparkDetectionApp()
    try:
        sys.exit(app.run())
    except KeyboardInterrupt:
        print("\n程序被用户中断")
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    main()
