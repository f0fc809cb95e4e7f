"""
自定义异常类定义

定义闪光/火花检测系统中使用的各种异常类，提供详细的错误信息和错误处理机制。
"""


class SparkDetectionError(Exception):
    """闪光/火花检测系统基础异常类

    所有系统异常的基类，提供统一的错误处理接口。
    """

    def __init__(self, message: str, error_code: str = None, suggestions: str = None):
        """初始化异常

        Args:
            message: 错误信息
            error_code: 错误代码
            suggestions: 错误恢复建议
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.suggestions = suggestions

    def __str__(self) -> str:
        """返回格式化的错误信息"""
        error_msg = f"错误: {self.message}"
        if self.error_code:
            error_msg += f" (错误代码: {self.error_code})"
        if self.suggestions:
            error_msg += f"\n建议: {self.suggestions}"
        return error_msg


class VideoProcessingError(SparkDetectionError):
    """视频处理相关错误

    当视频文件打开、解码或信息提取过程中发生错误时抛出。
    对单个视频是致命错误：文件标记为失败，队列继续处理下一个。
    """

    def __init__(self, message: str, error_code: str = None, suggestions: str = None):
        super().__init__(message, error_code, suggestions)


class VideoNotFoundError(VideoProcessingError):
    """视频文件不存在错误"""

    def __init__(self, file_path: str):
        message = f"视频文件不存在: {file_path}"
        suggestions = "请检查文件路径是否正确，确保文件存在且有读取权限"
        super().__init__(message, "FILE_NOT_FOUND", suggestions)


class UnsupportedFormatError(VideoProcessingError):
    """不支持的文件格式错误"""

    def __init__(self, file_path: str, format_info: str = None):
        message = f"不支持的视频格式: {file_path}"
        if format_info:
            message += f" ({format_info})"
        suggestions = "请使用支持的视频格式，如 .mp4 / .avi / .mov / .mkv 文件"
        super().__init__(message, "UNSUPPORTED_FORMAT", suggestions)


class CorruptedFileError(VideoProcessingError):
    """文件损坏错误"""

    def __init__(self, file_path: str):
        message = f"视频文件损坏或无法读取: {file_path}"
        suggestions = "请检查文件是否完整，尝试使用其他视频播放器验证文件是否正常"
        super().__init__(message, "CORRUPTED_FILE", suggestions)


class ConfigurationError(SparkDetectionError):
    """配置错误

    当配置文件解析或应用配置验证失败时抛出。
    算法参数不会触发该异常（非法值一律钳制或回退默认值）。
    """

    def __init__(self, config_issue: str, config_path: str = None):
        if config_path:
            message = f"配置错误 ({config_path}): {config_issue}"
        else:
            message = f"配置错误: {config_issue}"

        suggestions = "请检查配置文件格式是否正确，或使用默认配置"
        super().__init__(message, "CONFIGURATION_ERROR", suggestions)


class DetectionError(SparkDetectionError):
    """单帧检测错误

    单帧解码/转换失败时抛出，属于瞬时异常：跳过该帧继续处理。
    """

    def __init__(self, frame_number: int = None, details: str = None):
        if frame_number is not None:
            message = f"第 {frame_number} 帧检测失败"
        else:
            message = "帧检测失败"

        if details:
            message += f": {details}"

        suggestions = "该帧将被跳过，如频繁出现请检查视频编码"
        super().__init__(message, "DETECTION_FAILED", suggestions)


class PersistenceError(SparkDetectionError):
    """持久化错误

    当事件、截图或文件状态写入失败时抛出。
    """

    def __init__(self, operation: str, details: str = None):
        message = f"数据写入失败: {operation}"
        if details:
            message += f" - {details}"
        suggestions = "请检查存储目录权限及磁盘空间"
        super().__init__(message, "PERSISTENCE_FAILED", suggestions)


class QueueClosedError(SparkDetectionError):
    """队列已关闭

    与"队列为空"不同：关闭后不再接受新任务，取空后出队立即失败。
    """

    def __init__(self):
        super().__init__("分析队列已关闭", "QUEUE_CLOSED")


class OperationCancelledError(SparkDetectionError):
    """操作被取消

    协作式取消：在队列等待处及每个解码帧边界检查。不属于错误。
    """

    def __init__(self, context: str = None):
        message = "操作已取消"
        if context:
            message += f": {context}"
        super().__init__(message, "CANCELLED")
