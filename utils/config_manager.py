"""
配置管理模块

读取 YAML 配置文件并解析命令行参数，按优先级合并为应用配置。
优先级：命令行参数 > 配置文件 > 默认值

配置文件结构示例::

    videos:
      - data/cam01.mp4
    queue:
      capacity: 1000
      dequeue_error_backoff_ms: 500
    storage:
      snapshot_root: output
      results_path: output/results.json
    logging:
      level: INFO
      file_path: logs/spark.log
      enable_console: true
    algorithm:
      sample_fps: 8
      max_pulse_sec: 1.3
"""

import argparse
import json
import os
import yaml
from typing import Dict, List, Optional, Any

from models.data_models import Config, AlgorithmConfig
from models.interfaces import IConfigManager
from models.exceptions import ConfigurationError


VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class ConfigManager(IConfigManager):
    """配置管理器实现类

    结构性配置（队列容量、日志级别等）非法时抛出 ConfigurationError；
    算法参数永不报错，交给 AlgorithmConfig 钳制。
    """

    def __init__(self, config_path: Optional[str] = None, args: Optional[List[str]] = None):
        """初始化配置管理器

        Args:
            config_path: 配置文件路径，默认为 config.yaml
            args: 命令行参数列表，默认使用 sys.argv
        """
        self.config_path = config_path or "config.yaml"
        self.args = args
        self._config: Optional[Config] = None
        self._file_config: Dict[str, Any] = {}
        self._cmd_args: Optional[argparse.Namespace] = None

    def load_config(self) -> Config:
        """加载配置信息

        Returns:
            Config: 完整的配置对象

        Raises:
            ConfigurationError: 配置加载或验证失败时抛出
        """
        try:
            self._parse_command_line()
            self._load_config_file()
            merged_config = self._merge_configurations()
            self._config = self._create_and_validate_config(merged_config)
            return self._config

        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"配置加载失败: {str(e)}")

    def _load_config_file(self) -> None:
        """加载 YAML 配置文件，文件不存在时使用空配置"""
        if not os.path.exists(self.config_path):
            self._file_config = {}
            return

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"配置文件格式错误: {str(e)}", self.config_path)
        except OSError as e:
            raise ConfigurationError(f"无法读取配置文件: {str(e)}", self.config_path)

        if not isinstance(data, dict):
            raise ConfigurationError("配置文件顶层必须是键值映射", self.config_path)
        self._file_config = data

    @staticmethod
    def build_parser() -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="视频闪光/火花检测服务",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
使用示例:
  python main.py --video cam01.mp4 cam02.mp4
  python main.py --video cam01.mp4 --snapshot-root output --results output/results.json
  python main.py --config custom_config.yaml --algo-params '{"SampleFps": 10}'
            """
        )

        parser.add_argument('--video', '-v', nargs='+', help='待分析的视频文件路径（可多个）')
        parser.add_argument('--config', type=str, help='配置文件路径')
        parser.add_argument('--snapshot-root', type=str, help='截图输出根目录')
        parser.add_argument('--results', type=str, help='分析结果 JSON 输出路径')
        parser.add_argument('--queue-capacity', type=int, help='分析队列容量')
        parser.add_argument('--algo-params', type=str,
                            help='算法参数 JSON（键名支持 snake_case 或 PascalCase）')
        parser.add_argument('--sample-fps', type=int, help='目标抽帧帧率')
        parser.add_argument('--log-level', type=str, choices=VALID_LOG_LEVELS, help='日志级别')
        parser.add_argument('--log-file', type=str, help='日志文件路径')
        parser.add_argument('--no-console-log', action='store_true', help='禁用控制台日志输出')
        return parser

    def _parse_command_line(self) -> None:
        parser = self.build_parser()
        if self.args is not None:
            self._cmd_args = parser.parse_args(self.args)
        else:
            self._cmd_args = parser.parse_args()

        if self._cmd_args.config:
            self.config_path = self._cmd_args.config

    def _merge_configurations(self) -> Dict[str, Any]:
        """合并配置参数

        Returns:
            Dict[str, Any]: 合并后的配置字典
        """
        merged: Dict[str, Any] = {
            'video_paths': [],
            'snapshot_root': 'output',
            'results_path': None,
            'queue_capacity': 1000,
            'dequeue_error_backoff_ms': 500,
            'algorithm': {},
            'log_level': 'INFO',
            'log_file_path': None,
            'enable_console_log': True
        }

        fc = self._file_config
        if fc:
            if 'videos' in fc:
                videos = fc['videos']
                merged['video_paths'] = [videos] if isinstance(videos, str) else videos

            section_keys = {
                'queue': {'capacity': 'queue_capacity',
                          'dequeue_error_backoff_ms': 'dequeue_error_backoff_ms'},
                'storage': {'snapshot_root': 'snapshot_root',
                            'results_path': 'results_path'},
                'logging': {'level': 'log_level',
                            'file_path': 'log_file_path',
                            'enable_console': 'enable_console_log'},
            }
            for section, mapping in section_keys.items():
                values = fc.get(section) or {}
                if not isinstance(values, dict):
                    raise ConfigurationError(f"配置节 '{section}' 必须是键值映射", self.config_path)
                for file_key, config_key in mapping.items():
                    if file_key in values:
                        merged[config_key] = values[file_key]

            algorithm = fc.get('algorithm')
            if isinstance(algorithm, dict):
                merged['algorithm'] = dict(algorithm)
            elif isinstance(algorithm, str):
                merged['algorithm'] = self._parse_algo_json(algorithm)

        args = self._cmd_args
        if args:
            if args.video:
                merged['video_paths'] = list(args.video)
            if args.snapshot_root:
                merged['snapshot_root'] = args.snapshot_root
            if args.results:
                merged['results_path'] = args.results
            if args.queue_capacity is not None:
                merged['queue_capacity'] = args.queue_capacity
            if args.algo_params:
                merged['algorithm'].update(self._parse_algo_json(args.algo_params))
            if args.sample_fps is not None:
                merged['algorithm']['sample_fps'] = args.sample_fps
            if args.log_level:
                merged['log_level'] = args.log_level
            if args.log_file:
                merged['log_file_path'] = args.log_file
            if args.no_console_log:
                merged['enable_console_log'] = False

        return merged

    @staticmethod
    def _parse_algo_json(text: str) -> Dict[str, Any]:
        """解析算法参数 JSON，格式错误时返回空字典（使用默认参数）"""
        try:
            data = json.loads(text)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _create_and_validate_config(self, config_dict: Dict[str, Any]) -> Config:
        """创建并验证配置对象

        Raises:
            ConfigurationError: 配置验证失败时抛出
        """
        video_paths = config_dict.get('video_paths') or []
        if not isinstance(video_paths, list) or not all(isinstance(p, str) for p in video_paths):
            raise ConfigurationError(f"videos 必须是路径字符串列表: {video_paths}")
        if not video_paths:
            raise ConfigurationError("缺少必需参数: video (视频文件路径)")

        capacity = config_dict.get('queue_capacity')
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ConfigurationError(f"队列容量必须是正整数: {capacity}")

        backoff = config_dict.get('dequeue_error_backoff_ms')
        if isinstance(backoff, bool) or not isinstance(backoff, int) or backoff < 0:
            raise ConfigurationError(f"出队失败退避时间必须是非负整数: {backoff}")

        log_level = str(config_dict.get('log_level') or 'INFO')
        if log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError(f"无效的日志级别: {log_level}，支持的级别: {VALID_LOG_LEVELS}")

        snapshot_root = config_dict.get('snapshot_root') or 'output'
        try:
            os.makedirs(snapshot_root, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"无法创建截图目录: {snapshot_root} - {str(e)}")

        for path_key in ('results_path', 'log_file_path'):
            path = config_dict.get(path_key)
            directory = os.path.dirname(path) if path else None
            if directory and not os.path.exists(directory):
                try:
                    os.makedirs(directory, exist_ok=True)
                except OSError as e:
                    raise ConfigurationError(f"无法创建目录: {directory} - {str(e)}")

        # 算法参数只做钳制，不报错
        algorithm = AlgorithmConfig.from_dict(config_dict.get('algorithm')).to_dict()

        return Config(
            video_paths=list(video_paths),
            snapshot_root=str(snapshot_root),
            results_path=config_dict.get('results_path'),
            queue_capacity=capacity,
            dequeue_error_backoff_ms=backoff,
            algorithm=algorithm,
            log_level=log_level.upper(),
            log_file_path=config_dict.get('log_file_path'),
            enable_console_log=bool(config_dict.get('enable_console_log', True))
        )

    def get_config(self) -> Config:
        if self._config is None:
            self.load_config()
        return self._config

    def get_algorithm_config(self) -> AlgorithmConfig:
        """获取校验后的算法参数对象"""
        return AlgorithmConfig.from_dict(self.get_config().algorithm)
