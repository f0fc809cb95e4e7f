"""
分析工作线程模块

单消费者循环：出队 -> 处理单个视频。单个视频出错只记录日志，循环继续；
收到停止信号或队列关闭并取空后退出。
"""

import threading
import time
from typing import Optional
import logging

from models.data_models import FileResult
from models.exceptions import OperationCancelledError, QueueClosedError
from processors.analysis_queue import AnalysisQueue
from processors.spark_detection_service import SparkDetectionService
from utils.logger import log_error
from utils.performance import MemoryMonitor, ThroughputTracker


class AnalysisWorker:
    """后台分析工作线程"""

    def __init__(self, queue: AnalysisQueue, service: SparkDetectionService,
                 dequeue_error_backoff_ms: int = 500,
                 memory_monitor: Optional[MemoryMonitor] = None,
                 tracker: Optional[ThroughputTracker] = None):
        """
        Args:
            queue: 分析队列
            service: 单视频处理单元
            dequeue_error_backoff_ms: 出队异常后的退避时间（毫秒）
            memory_monitor: 内存监控器，每个视频结束后检查一次
            tracker: 吞吐统计
        """
        self.queue = queue
        self.service = service
        self.dequeue_error_backoff_ms = max(0, dequeue_error_backoff_ms)
        self.memory_monitor = memory_monitor
        self.tracker = tracker or ThroughputTracker()
        self.logger = logging.getLogger(__name__)

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.current_file_id: Optional[int] = None

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="analysis-worker", daemon=True)
        self._thread.start()
        self.logger.info("分析工作线程已启动")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """发出取消信号并等待线程退出"""
        self._stop_event.set()
        self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> bool:
        """等待线程退出

        Returns:
            bool: 线程已退出返回 True
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def run(self) -> None:
        """消费循环（也可在当前线程直接调用）"""
        while not self._stop_event.is_set():
            try:
                file_id = self.queue.dequeue(cancel_event=self._stop_event)
            except (OperationCancelledError, QueueClosedError) as e:
                self.logger.info(f"分析工作线程退出: {e.message}")
                break
            except Exception as e:
                log_error(e, "出队失败")
                self._stop_event.wait(self.dequeue_error_backoff_ms / 1000.0)
                continue

            if not self._process(file_id):
                break

        self.logger.info("分析工作线程已停止")

    def _process(self, file_id: int) -> bool:
        """处理一个视频

        Returns:
            bool: 应继续循环返回 True；取消时返回 False
        """
        self.current_file_id = file_id
        start_time = time.time()
        try:
            result: FileResult = self.service.process_file(file_id, self._stop_event)
            if not result.skipped:
                self.tracker.record_file(result.analyze_ms, result.event_count)
        except OperationCancelledError:
            self.logger.info(f"视频 {file_id} 处理被取消")
            return False
        except Exception as e:
            log_error(e, "视频分析失败", file_id=file_id)
            self.tracker.record_file(int((time.time() - start_time) * 1000), 0, failed=True)
        finally:
            self.current_file_id = None
            if self.memory_monitor is not None:
                self.memory_monitor.check_memory_usage()
        return True
