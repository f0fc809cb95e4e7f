"""
分析队列单元测试

测试先进先出、背压、关闭语义（取空后失败、唤醒等待者）、取消与超时。
"""

import queue
import threading
import time
import unittest

from models.exceptions import OperationCancelledError, QueueClosedError
from processors.analysis_queue import AnalysisQueue


class TestAnalysisQueue(unittest.TestCase):
    """分析队列测试类"""

    def setUp(self):
        self.queue = AnalysisQueue(capacity=3, poll_interval=0.01)

    def test_fifo_order(self):
        for file_id in (3, 1, 2):
            self.queue.enqueue(file_id)
        self.assertEqual(len(self.queue), 3)
        self.assertEqual([self.queue.dequeue() for _ in range(3)], [3, 1, 2])
        self.assertEqual(self.queue.qsize(), 0)

    def test_close_drains_then_fails(self):
        """关闭后已排队的条目仍可取出，取空后出队失败"""
        self.queue.enqueue(1)
        self.queue.enqueue(2)
        self.queue.close()

        self.assertTrue(self.queue.closed)
        self.assertEqual(self.queue.dequeue(), 1)
        self.assertEqual(self.queue.dequeue(), 2)
        with self.assertRaises(QueueClosedError):
            self.queue.dequeue()

    def test_enqueue_after_close_fails(self):
        self.queue.close()
        with self.assertRaises(QueueClosedError):
            self.queue.enqueue(1)

    def test_close_wakes_pending_dequeue(self):
        errors = []

        def consumer():
            try:
                self.queue.dequeue()
            except QueueClosedError as e:
                errors.append(e)

        thread = threading.Thread(target=consumer)
        thread.start()
        time.sleep(0.05)
        self.queue.close()
        thread.join(timeout=2)

        self.assertFalse(thread.is_alive())
        self.assertEqual(len(errors), 1)

    def test_blocked_dequeue_receives_item(self):
        results = []
        thread = threading.Thread(target=lambda: results.append(self.queue.dequeue(timeout=2)))
        thread.start()
        time.sleep(0.05)
        self.queue.enqueue(42)
        thread.join(timeout=2)
        self.assertEqual(results, [42])

    def test_dequeue_timeout_is_empty_not_closed(self):
        with self.assertRaises(queue.Empty):
            self.queue.dequeue(timeout=0.05)

    def test_full_queue_applies_backpressure(self):
        for file_id in range(3):
            self.queue.enqueue(file_id)
        with self.assertRaises(queue.Full):
            self.queue.enqueue(99, timeout=0.05)

        self.queue.dequeue()
        self.queue.enqueue(99, timeout=0.05)
        self.assertEqual(self.queue.qsize(), 3)

    def test_cancelled_dequeue(self):
        cancel_event = threading.Event()
        cancel_event.set()
        with self.assertRaises(OperationCancelledError):
            self.queue.dequeue(cancel_event=cancel_event)

    def test_cancel_while_waiting_to_enqueue(self):
        for file_id in range(3):
            self.queue.enqueue(file_id)
        cancel_event = threading.Event()
        timer = threading.Timer(0.05, cancel_event.set)
        timer.start()
        try:
            with self.assertRaises(OperationCancelledError):
                self.queue.enqueue(99, cancel_event=cancel_event, timeout=2)
        finally:
            timer.cancel()

    def test_close_is_idempotent(self):
        self.queue.close()
        self.queue.close()
        self.assertTrue(self.queue.closed)


if __name__ == '__main__':
    unittest.main()
