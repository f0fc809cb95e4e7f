"""
截图文件存储模块

负责截图 JPEG 的路径生成、写入与删除。
路径格式: <root>/<job_no>/snapshots/<file_id>_<frame>_<LABEL>_t<sec>s.jpg
"""

import os
from pathlib import Path
from typing import Optional
import cv2
import numpy as np
import logging

from models.exceptions import PersistenceError


class SnapshotStore:
    """本地截图文件存储"""

    def __init__(self, root: str, jpeg_quality: int = 90):
        self.root = str(Path(root))
        self.jpeg_quality = jpeg_quality
        self.logger = logging.getLogger(__name__)

    def snapshot_dir(self, job_no: str) -> str:
        return os.path.join(self.root, job_no, "snapshots")

    def build_path(self, job_no: str, file_id: int, frame_index: int,
                   label: str, time_sec: float) -> str:
        name = f"{file_id}_{frame_index}_{label}_t{time_sec:.3f}s.jpg"
        return os.path.join(self.snapshot_dir(job_no), name)

    def write(self, path: str, image: np.ndarray) -> None:
        """编码为 JPEG 并写入文件

        Raises:
            PersistenceError: 编码或写入失败时抛出
        """
        ok, buffer = cv2.imencode('.jpg', image, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise PersistenceError("写入截图", f"JPEG 编码失败: {path}")

        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            # 经 imencode + 字节写入，兼容非 ASCII 路径
            with open(path, 'wb') as f:
                f.write(buffer.tobytes())
        except OSError as e:
            raise PersistenceError("写入截图", f"{path}: {e}")

    def read(self, path: str) -> Optional[np.ndarray]:
        if not os.path.isfile(path):
            return None
        data = np.fromfile(path, dtype=np.uint8)
        return cv2.imdecode(data, cv2.IMREAD_COLOR)

    def delete(self, path: Optional[str]) -> bool:
        """删除截图文件，文件不存在视为成功

        Returns:
            bool: 删除成功或文件本不存在返回 True
        """
        if not path:
            return True
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            self.logger.warning(f"删除截图文件失败: {path} - {e}")
            return False
