"""
AI 服务配置类
"""
import os
from dataclasses import dataclass
from typing import Optional

from nenua.common import env_bool


DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


@dataclass
class AIConfig:
    """AI 服务配置对象

    统一管理所有 AI 功能的配置
    """
    # Gemini API 配置
    api_key: Optional[str] = None  # Gemini API Key（缺失时构建客户端会抛 ConfigurationError）
    base_url: str = DEFAULT_BASE_URL  # API 基础 URL
    model: str = "gemini-3-flash-preview"  # 默认模型（聊天 / 天气 / 视觉 / 健康）

    # 笔记专用模型
    notes_model: str = "gemini-3-pro-preview"

    # 超时配置
    timeout: float = 30  # 单次 API 请求超时（秒）

    # 重试配置
    max_attempts: int = 3  # 最大尝试次数（含首次）
    base_delay: float = 3.0  # 退避基数（秒），第 i 次失败后等待 2^i * base_delay
    max_jitter: float = 1.0  # 随机抖动上限（秒）

    # 解析配置
    lenient_json: bool = False  # True 时无法解析的 JSON 返回全默认值，而不是抛 MalformedResponseError

    # 业务默认值
    default_location: str = "New York"

    # 日志配置
    log_dir: Optional[str] = "logs"

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> 'AIConfig':
        """从环境变量创建配置

        .env 由 nenua.common 在导入时加载

        Returns:
            AIConfig 实例
        """
        api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or ""
        api_key = api_key.strip()
        if api_key == "undefined":
            api_key = ""

        return cls(
            api_key=api_key or None,
            base_url=os.getenv("NENUA_BASE_URL", DEFAULT_BASE_URL),
            model=os.getenv("NENUA_MODEL", "gemini-3-flash-preview"),
            notes_model=os.getenv("NENUA_NOTES_MODEL", "gemini-3-pro-preview"),
            timeout=float(os.getenv("NENUA_TIMEOUT", "30")),
            max_attempts=int(os.getenv("NENUA_MAX_ATTEMPTS", "3")),
            lenient_json=env_bool("NENUA_LENIENT_JSON", False),
            default_location=os.getenv("NENUA_DEFAULT_LOCATION", "New York"),
            log_dir=os.getenv("NENUA_LOG_DIR", "logs") or None,
        )
