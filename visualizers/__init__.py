"""
可视化模块

包含事件截图标注相关的类。
"""

from .visualizer import SnapshotAnnotator

__all__ = ['SnapshotAnnotator']
