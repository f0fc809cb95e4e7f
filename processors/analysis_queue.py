"""
分析队列模块

有界的视频 ID 队列：满时入队阻塞（背压），空时出队阻塞。
关闭后拒绝入队，已排队的条目仍会被取出，取空后出队立即失败，
等待中的出队方会被唤醒并收到 QueueClosedError（区别于超时的 queue.Empty）。
"""

import queue
import threading
import time
from collections import deque
from typing import Deque, Optional
import logging

from models.exceptions import QueueClosedError, OperationCancelledError


class AnalysisQueue:
    """单消费者的有界分析队列"""

    def __init__(self, capacity: int = 1000, poll_interval: float = 0.1):
        """
        Args:
            capacity: 队列容量
            poll_interval: 等待期间检查取消信号的间隔（秒）
        """
        self.capacity = max(1, capacity)
        self.poll_interval = poll_interval
        self._items: Deque[int] = deque()
        self._closed = False
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)
        self.logger = logging.getLogger(__name__)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def qsize(self) -> int:
        with self._lock:
            return len(self._items)

    def __len__(self) -> int:
        return self.qsize()

    def _wait(self, condition: threading.Condition, deadline: Optional[float],
              cancel_event: Optional[threading.Event], context: str) -> None:
        """在条件变量上等待一个轮询周期，期间检查取消与超时"""
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(context)

        wait_time = self.poll_interval
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise queue.Full() if condition is self._not_full else queue.Empty()
            wait_time = min(wait_time, remaining)
        condition.wait(wait_time)

    def enqueue(self, file_id: int, cancel_event: Optional[threading.Event] = None,
                timeout: Optional[float] = None) -> None:
        """入队，队列满时阻塞

        Raises:
            QueueClosedError: 队列已关闭
            OperationCancelledError: 等待期间收到取消信号
            queue.Full: 超时仍未入队
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._not_full:
            while True:
                if self._closed:
                    raise QueueClosedError()
                if len(self._items) < self.capacity:
                    break
                self._wait(self._not_full, deadline, cancel_event, "等待入队")

            self._items.append(file_id)
            self._not_empty.notify()

        self.logger.debug(f"视频 {file_id} 入队，当前队列长度: {self.qsize()}")

    def dequeue(self, cancel_event: Optional[threading.Event] = None,
                timeout: Optional[float] = None) -> int:
        """出队，队列空时阻塞

        Raises:
            QueueClosedError: 队列已关闭且已取空
            OperationCancelledError: 等待期间收到取消信号
            queue.Empty: 超时仍无条目
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._not_empty:
            while not self._items:
                if self._closed:
                    raise QueueClosedError()
                self._wait(self._not_empty, deadline, cancel_event, "等待出队")

            file_id = self._items.popleft()
            self._not_full.notify()
            return file_id

    def close(self) -> None:
        """关闭队列并唤醒所有等待者"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()
        self.logger.info("分析队列已关闭")
