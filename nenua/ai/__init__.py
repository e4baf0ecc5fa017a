"""
AI 模块 - 统一的 AI 功能入口（Gemini 网关）

架构：
┌─────────────────────────────────────────────┐
│             AIService (统一入口)              │
├─────────────────────────────────────────────┤
│  send_message()            → 聊天（会话由调用方持有） │
│  request_structured()      → Schema 约束请求     │
│  request_vision_analysis() → 带图片的请求        │
│  generate_cornell_notes / fetch_weather_prep │
│  analyze_camera_frame / get_health_advice    │
├─────────────────────────────────────────────┤
│  RetryPolicy (429 指数退避重试)                │
│  GeminiClient (httpx)                        │
├─────────────────────────────────────────────┤
│  AIConfig (配置层)                            │  ← API Key, 模型配置
└─────────────────────────────────────────────┘

使用示例：
```python
import asyncio
from nenua.ai import create_ai_service, AIConfig

# 1. 创建配置（或 AIConfig.from_env()）
config = AIConfig(api_key="your_api_key")

# 2. 创建 AI 服务
ai = create_ai_service(config)

# 3. 聊天
session = ai.create_chat_session([{"role": "model", "text": "Hi!"}])
reply, session = asyncio.run(ai.send_message(session, "帮我做个复习计划"))

# 4. 健康建议
advice = asyncio.run(ai.get_health_advice("I feel exhausted and my back hurts"))
print(advice.triage_level.value)  # Self-Care / Consult Pharmacist / See a Doctor
```
"""

from .ai_config import AIConfig
from .ai_service import AIService, create_ai_service
from .chat import ChatRole, ChatSession, ChatTurn, create_chat_session, default_history
from .errors import (
    CapacityExhaustedError,
    ConfigurationError,
    GatewayError,
    MalformedResponseError,
    RequestFailureError,
    UpstreamError,
    describe_error,
    is_capacity_exhausted,
)
from .gemini_client import GeminiClient, GenerateResult, Source
from .retry import RetryPolicy
from .schemas import AnalysisResult, CornellNote, ForecastDay, HealthAdvice, TriageLevel, WeatherInfo
from .vision_analyzer import VisionAnalyzer

__all__ = [
    # 配置
    'AIConfig',

    # 服务
    'AIService',
    'create_ai_service',
    'GeminiClient',
    'GenerateResult',
    'RetryPolicy',

    # 聊天
    'ChatRole',
    'ChatSession',
    'ChatTurn',
    'create_chat_session',
    'default_history',

    # 结果
    'AnalysisResult',
    'CornellNote',
    'ForecastDay',
    'HealthAdvice',
    'Source',
    'TriageLevel',
    'WeatherInfo',

    # 分析器
    'VisionAnalyzer',

    # 错误
    'GatewayError',
    'ConfigurationError',
    'UpstreamError',
    'CapacityExhaustedError',
    'RequestFailureError',
    'MalformedResponseError',
    'describe_error',
    'is_capacity_exhausted',
]
