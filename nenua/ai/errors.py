"""
AI 网关错误类型与分类

错误分类：
- ConfigurationError：缺少 API Key 等配置问题
- CapacityExhaustedError：上游限流 / 配额耗尽（429 / RESOURCE_EXHAUSTED），唯一可重试的错误
- RequestFailureError：其他上游错误（鉴权、请求格式、网络故障），不重试
- MalformedResponseError：上游返回的文本无法解析为 JSON 对象
"""
from typing import Any, Dict, Optional

import httpx


CAPACITY_STATUS = 429
CAPACITY_CODE = "RESOURCE_EXHAUSTED"


class GatewayError(Exception):
    """AI 网关错误基类"""
    pass


class ConfigurationError(GatewayError):
    """配置错误（例如未设置 API Key）"""
    pass


class UpstreamError(GatewayError):
    """上游 API 返回的错误

    保留原始错误形态，便于调用方检查：
    - status: HTTP 状态码
    - code: 上游的字符串错误码（如 RESOURCE_EXHAUSTED）
    - error: 上游返回的 error 对象（原样保留）
    """

    def __init__(self, message: str, status: Optional[int] = None,
                 code: Optional[str] = None, error: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.error = error or {}


class CapacityExhaustedError(UpstreamError):
    """上游限流 / 配额耗尽"""
    pass


class RequestFailureError(UpstreamError):
    """不可重试的上游错误"""
    pass


class MalformedResponseError(GatewayError):
    """上游返回无法解析的 JSON"""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


def _is_capacity_value(value: Any) -> bool:
    """单个字段值是否表示配额耗尽"""
    if value is None or isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value == CAPACITY_STATUS
    if isinstance(value, str):
        text = value.strip().upper()
        return text == str(CAPACITY_STATUS) or CAPACITY_CODE in text
    return False


def _nested_get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def is_capacity_exhausted(error: BaseException) -> bool:
    """判断错误是否为配额耗尽（唯一可重试的错误）

    依次检查：
    1. 网关自身的类型化错误（CapacityExhaustedError 可重试，其余不可重试）
    2. status / status_code / code 属性（数字 429 或字符串 RESOURCE_EXHAUSTED）
    3. httpx.HTTPStatusError 的响应状态码
    4. 嵌套的 error 对象 / 字典中的 code / status
    5. 错误消息中包含 "429" 或 "RESOURCE_EXHAUSTED"

    Args:
        error: 任意异常

    Returns:
        是否可重试
    """
    if isinstance(error, CapacityExhaustedError):
        return True
    if isinstance(error, (RequestFailureError, MalformedResponseError, ConfigurationError)):
        return False

    for attr in ("status", "status_code", "code"):
        if _is_capacity_value(getattr(error, attr, None)):
            return True

    if isinstance(error, httpx.HTTPStatusError):
        if error.response is not None and error.response.status_code == CAPACITY_STATUS:
            return True

    nested = getattr(error, "error", None)
    if nested is not None:
        for key in ("code", "status"):
            if _is_capacity_value(_nested_get(nested, key)):
                return True

    message = str(error)
    return str(CAPACITY_STATUS) in message or CAPACITY_CODE in message


def describe_error(error: BaseException, fallback: str = "Request failed.") -> str:
    """将错误转换为面向用户的提示

    Args:
        error: 网关抛出的异常
        fallback: 其他错误使用的提示（各功能可自定义）

    Returns:
        提示文本
    """
    if isinstance(error, ConfigurationError):
        return "API key not configured."
    if is_capacity_exhausted(error):
        return "Quota limit reached."
    if isinstance(error, MalformedResponseError):
        return "AI returned an unreadable response."
    return fallback
