"""
日志系统模块

提供统一格式的日志输出，支持控制台与轮转文件两种目标。
分析队列、单视频处理单元和命令行入口都通过这里获取日志记录器。
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any
from enum import Enum


APP_NAME = "视频闪光/火花检测服务"


class LogLevel(Enum):
    """日志级别枚举"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggerManager:
    """日志管理器

    单例。负责创建日志记录器并统一挂载处理器，
    重新配置时会同步更新已创建的记录器。
    """

    _instance: Optional['LoggerManager'] = None
    _initialized: bool = False

    def __new__(cls) -> 'LoggerManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._loggers: Dict[str, logging.Logger] = {}
            self._log_level = LogLevel.INFO
            self._log_file_path: Optional[str] = None
            self._console_handler: Optional[logging.Handler] = None
            self._file_handler: Optional[logging.Handler] = None
            self._formatter = logging.Formatter(
                fmt=("%(asctime)s - %(name)s - %(levelname)s - "
                     "[%(filename)s:%(lineno)d] - %(message)s"),
                datefmt="%Y-%m-%d %H:%M:%S"
            )
            LoggerManager._initialized = True

    @property
    def level_name(self) -> str:
        return self._log_level.value

    @property
    def log_file_path(self) -> Optional[str]:
        return self._log_file_path

    def configure(
        self,
        log_level: str = "INFO",
        log_file_path: Optional[str] = None,
        enable_console: bool = True,
        max_file_size: int = 10 * 1024 * 1024,
        backup_count: int = 5
    ) -> None:
        """配置日志系统

        Args:
            log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_file_path: 日志文件路径，None 表示不写文件
            enable_console: 是否输出到控制台
            max_file_size: 单个日志文件最大字节数
            backup_count: 轮转备份数量
        """
        try:
            self._log_level = LogLevel(str(log_level).upper())
        except ValueError:
            self._log_level = LogLevel.INFO
            print(f"警告: 无效的日志级别 '{log_level}'，使用默认级别 INFO")

        self._log_file_path = log_file_path
        self._cleanup_handlers()

        if enable_console:
            self._console_handler = logging.StreamHandler(sys.stdout)
            self._console_handler.setLevel(self._numeric_level())
            self._console_handler.setFormatter(self._formatter)

        if log_file_path:
            self._setup_file_handler(log_file_path, max_file_size, backup_count)

        for logger in self._loggers.values():
            self._configure_logger(logger)

    def _numeric_level(self) -> int:
        return getattr(logging, self._log_level.value)

    def _cleanup_handlers(self) -> None:
        for handler in (self._console_handler, self._file_handler):
            if handler:
                handler.close()
        self._console_handler = None
        self._file_handler = None

    def _setup_file_handler(self, log_file_path: str, max_file_size: int,
                            backup_count: int) -> None:
        """创建轮转文件处理器，失败时只打印警告"""
        try:
            log_dir = os.path.dirname(log_file_path)
            if log_dir:
                Path(log_dir).mkdir(parents=True, exist_ok=True)

            self._file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file_path,
                maxBytes=max_file_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
            self._file_handler.setLevel(self._numeric_level())
            self._file_handler.setFormatter(self._formatter)

        except OSError as e:
            print(f"警告: 无法设置文件日志处理器: {e}")
            self._file_handler = None

    def _configure_logger(self, logger: logging.Logger) -> None:
        logger.handlers.clear()
        logger.setLevel(self._numeric_level())

        if self._console_handler:
            logger.addHandler(self._console_handler)
        if self._file_handler:
            logger.addHandler(self._file_handler)

        # 不向根记录器传播，避免重复输出
        logger.propagate = False

    def get_logger(self, name: str) -> logging.Logger:
        """获取日志记录器

        Args:
            name: 日志记录器名称，通常使用模块名

        Returns:
            logging.Logger: 配置好的日志记录器
        """
        if name not in self._loggers:
            logger = logging.getLogger(name)
            self._configure_logger(logger)
            self._loggers[name] = logger

        return self._loggers[name]

    def log_system_info(self) -> None:
        logger = self.get_logger("system")
        logger.info("=" * 50)
        logger.info(f"{APP_NAME}启动")
        logger.info(f"启动时间: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info(f"日志级别: {self._log_level.value}")
        logger.info(f"日志文件: {self._log_file_path or '未启用'}")
        logger.info("=" * 50)

    def log_config_info(self, config: Dict[str, Any]) -> None:
        """逐项记录配置信息（只输出可序列化的基础类型）"""
        logger = self.get_logger("config")
        logger.info("系统配置信息:")
        for key, value in self._sanitize_config(config).items():
            logger.info(f"  {key}: {value}")

    def _sanitize_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        safe_config = {}
        for key, value in config.items():
            if isinstance(value, dict):
                safe_config[key] = self._sanitize_config(value)
            elif value is None or isinstance(value, (str, int, float, bool, list)):
                safe_config[key] = value
            else:
                safe_config[key] = str(type(value))
        return safe_config

    def log_performance_info(
        self,
        operation: str,
        duration: float,
        additional_info: Optional[Dict[str, Any]] = None
    ) -> None:
        """记录性能信息

        Args:
            operation: 操作名称
            duration: 执行时间（秒）
            additional_info: 额外信息
        """
        logger = self.get_logger("performance")
        info_parts = [f"操作: {operation}", f"耗时: {duration:.3f}秒"]
        if additional_info:
            info_parts.extend(f"{key}: {value}" for key, value in additional_info.items())
        logger.info(" | ".join(info_parts))

    def log_error_with_context(
        self,
        error: Exception,
        context: str,
        additional_info: Optional[Dict[str, Any]] = None
    ) -> None:
        """记录带上下文的错误信息（附带异常堆栈）"""
        logger = self.get_logger("error")
        error_info = [
            f"错误类型: {type(error).__name__}",
            f"错误信息: {str(error)}",
            f"上下文: {context}"
        ]
        if additional_info:
            error_info.extend(f"{key}: {value}" for key, value in additional_info.items())
        logger.error(" | ".join(error_info), exc_info=error)

    def shutdown(self) -> None:
        self.get_logger("system").info("日志系统关闭")
        self._cleanup_handlers()
        for logger in self._loggers.values():
            logger.handlers.clear()
        self._loggers.clear()


logger_manager = LoggerManager()


def get_logger(name: str) -> logging.Logger:
    """获取日志记录器的便捷函数"""
    return logger_manager.get_logger(name)


def configure_logging(
    log_level: str = "INFO",
    log_file_path: Optional[str] = None,
    enable_console: bool = True,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> None:
    """配置日志系统的便捷函数"""
    logger_manager.configure(
        log_level=log_level,
        log_file_path=log_file_path,
        enable_console=enable_console,
        max_file_size=max_file_size,
        backup_count=backup_count
    )


def log_system_startup() -> None:
    logger_manager.log_system_info()


def log_performance(operation: str, duration: float, **kwargs) -> None:
    """记录性能信息的便捷函数

    Args:
        operation: 操作名称
        duration: 执行时间（秒）
        **kwargs: 额外信息，如 file_id、event_count
    """
    logger_manager.log_performance_info(operation, duration, kwargs)


def log_error(error: Exception, context: str, **kwargs) -> None:
    """记录错误信息的便捷函数

    Args:
        error: 异常对象
        context: 错误上下文
        **kwargs: 额外信息
    """
    logger_manager.log_error_with_context(error, context, kwargs)
