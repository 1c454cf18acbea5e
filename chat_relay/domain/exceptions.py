"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层统一捕获并转换为 JSON 错误响应。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 thread_id、model 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败，例如会话不存在、内容为空、密钥缺失。"""


class UpstreamError(BusinessError):
    """补全接口调用失败的基类（非 2xx 状态或传输层错误）。"""

    def __init__(self, code: str, message: str, http_status: int = 502, **extra):
        super().__init__(code, message, http_status, **extra)


class NetworkError(UpstreamError):
    """网络层错误，例如连接失败、读取超时、连接中途断开。"""


class ApiError(UpstreamError):
    """补全接口返回非 2xx/429 错误时抛出。"""


class RateLimitError(UpstreamError):
    """补全接口限流（429）。"""

    def __init__(self, code: str, message: str, http_status: int = 429, **extra):
        super().__init__(code, message, http_status, **extra)


class PersistenceError(BusinessError):
    """存储读写失败。"""

    def __init__(self, code: str, message: str, http_status: int = 500, **extra):
        super().__init__(code, message, http_status, **extra)


class SummarizationError(BusinessError):
    """标题生成失败。调用方总是吞掉该错误，会话保持无标题。"""
