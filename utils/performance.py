"""
性能监控工具模块

提供进程内存监控与分析吞吐统计，供分析工作线程在每个视频结束后记录。
"""

import gc
import threading
import time
from typing import Dict, Optional
import psutil
import logging


class MemoryMonitor:
    """内存监控器

    跟踪进程常驻内存与系统内存占用，超过阈值时触发垃圾回收。
    帧环形缓冲持有原图帧，长视频排队处理时需要关注峰值内存。
    """

    def __init__(self, max_memory_mb: Optional[int] = None,
                 gc_threshold: float = 0.8):
        """初始化内存监控器

        Args:
            max_memory_mb: 进程内存上限（MB），None 表示不限制
            gc_threshold: 系统内存占用比例超过该值时触发垃圾回收（0.0-1.0）
        """
        self.max_memory_mb = max_memory_mb
        self.gc_threshold = gc_threshold
        self.logger = logging.getLogger(__name__)
        self.process = psutil.Process()

        self.stats = {
            'gc_count': 0,
            'peak_memory_mb': 0.0,
            'memory_warnings': 0
        }

    def get_memory_usage(self) -> Dict[str, float]:
        """获取当前内存使用情况

        Returns:
            Dict[str, float]: 进程内存、系统占用比例、系统可用内存与峰值
        """
        try:
            memory_mb = self.process.memory_info().rss / (1024 * 1024)
            system_memory = psutil.virtual_memory()
        except psutil.Error as e:
            self.logger.error(f"获取内存使用信息失败: {str(e)}")
            return {}

        if memory_mb > self.stats['peak_memory_mb']:
            self.stats['peak_memory_mb'] = memory_mb

        return {
            'process_memory_mb': memory_mb,
            'system_memory_percent': system_memory.percent,
            'system_available_mb': system_memory.available / (1024 * 1024),
            'peak_memory_mb': self.stats['peak_memory_mb']
        }

    def check_memory_usage(self) -> bool:
        """检查内存使用，必要时执行垃圾回收

        Returns:
            bool: 进程内存未超过上限返回 True
        """
        memory_info = self.get_memory_usage()
        if not memory_info:
            return True

        process_memory_mb = memory_info['process_memory_mb']
        if self.max_memory_mb and process_memory_mb > self.max_memory_mb:
            self.logger.warning(f"进程内存使用超过限制: {process_memory_mb:.1f} MB > {self.max_memory_mb} MB")
            self.stats['memory_warnings'] += 1
            self._force_garbage_collection()
            return False

        if memory_info['system_memory_percent'] > self.gc_threshold * 100:
            self.logger.warning(f"系统内存使用过高: {memory_info['system_memory_percent']:.1f}%")
            self.stats['memory_warnings'] += 1
            self._force_garbage_collection()

        return True

    def _force_garbage_collection(self) -> None:
        collected = gc.collect()
        self.stats['gc_count'] += 1
        self.logger.info(f"垃圾回收完成，回收对象: {collected}")

    def get_memory_stats(self) -> Dict[str, float]:
        return {
            **self.stats,
            **self.get_memory_usage(),
            'max_memory_limit_mb': self.max_memory_mb,
            'gc_threshold': self.gc_threshold
        }


class ThroughputTracker:
    """分析吞吐统计（线程安全）

    记录已处理的视频数、解码帧数与累计耗时，用于结束时输出统计信息。
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._start_time = time.time()
        self.files_processed = 0
        self.files_failed = 0
        self.events_found = 0
        self.total_analyze_ms = 0

    def record_file(self, analyze_ms: int, event_count: int, failed: bool = False) -> None:
        with self._lock:
            if failed:
                self.files_failed += 1
            else:
                self.files_processed += 1
            self.events_found += event_count
            self.total_analyze_ms += max(0, int(analyze_ms))

    def get_stats(self) -> Dict[str, float]:
        with self._lock:
            finished = self.files_processed + self.files_failed
            return {
                'files_processed': self.files_processed,
                'files_failed': self.files_failed,
                'events_found': self.events_found,
                'total_analyze_ms': self.total_analyze_ms,
                'average_analyze_ms': self.total_analyze_ms / finished if finished else 0.0,
                'elapsed_sec': time.time() - self._start_time
            }
