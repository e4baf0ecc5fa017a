"""
Gemini API 客户端

基于 httpx 调用 Gemini generateContent REST 接口

职责：
1. 构建请求（contents / systemInstruction / responseSchema / tools）
2. 将 HTTP 错误转换为网关错误类型
3. 提取回复文本和检索来源

不负责重试（由 RetryPolicy 统一处理）
"""
import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from nenua.common import Logger
from .errors import (
    CAPACITY_CODE,
    CAPACITY_STATUS,
    CapacityExhaustedError,
    ConfigurationError,
    RequestFailureError,
    UpstreamError,
)
from .ai_config import DEFAULT_BASE_URL


# Google 搜索检索工具
GOOGLE_SEARCH_TOOL = {"google_search": {}}


def text_part(text: str) -> Dict[str, Any]:
    return {"text": text}


def image_part(image_bytes: bytes, mime_type: str = "image/jpeg") -> Dict[str, Any]:
    """内联图片 part（base64）"""
    return {
        "inlineData": {
            "mimeType": mime_type,
            "data": base64.b64encode(image_bytes).decode("utf-8")
        }
    }


def content(role: str, *parts: Dict[str, Any]) -> Dict[str, Any]:
    return {"role": role, "parts": list(parts)}


@dataclass
class Source:
    """检索来源"""
    title: str = ""
    uri: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "uri": self.uri}


@dataclass
class GenerateResult:
    """一次 generateContent 调用的结果"""
    text: str = ""
    sources: List[Source] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_response(cls, response_json: Dict[str, Any]) -> 'GenerateResult':
        """解析 API 响应

        Args:
            response_json: generateContent 返回的 JSON

        Returns:
            GenerateResult（无候选时 text 为空字符串）
        """
        candidates = response_json.get("candidates") or []
        if not candidates:
            return cls(raw=response_json)

        candidate = candidates[0] or {}
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts
                       if isinstance(part, dict) and not part.get("thought"))

        sources = []
        seen = set()
        metadata = candidate.get("groundingMetadata") or {}
        for chunk in metadata.get("groundingChunks") or []:
            web = (chunk or {}).get("web") or {}
            uri = web.get("uri", "")
            if not uri or uri in seen:
                continue
            seen.add(uri)
            sources.append(Source(title=web.get("title", "") or uri, uri=uri))

        return cls(text=text, sources=sources, raw=response_json)


class GeminiClient:
    """Gemini API 客户端

    显式构造、可注入：调用方在启动时创建一次并传给 AIService。
    每次请求使用独立的 httpx.AsyncClient，不跨事件循环共享连接。
    """

    def __init__(self, api_key: Optional[str], base_url: str = DEFAULT_BASE_URL,
                 timeout: float = 30, transport: Optional[httpx.AsyncBaseTransport] = None,
                 logger: Optional[Logger] = None):
        """
        Args:
            api_key: Gemini API Key
            base_url: API 基础 URL
            timeout: 请求超时（秒）
            transport: 自定义 httpx transport（测试时注入 MockTransport）
            logger: 日志工具

        Raises:
            ConfigurationError: 未提供 API Key
        """
        if not api_key:
            raise ConfigurationError(
                "Gemini API key not configured. Set GEMINI_API_KEY (or API_KEY) "
                "in the environment or the .env file."
            )

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.logger = logger or Logger()

    @classmethod
    def from_config(cls, config, transport: Optional[httpx.AsyncBaseTransport] = None,
                    logger: Optional[Logger] = None) -> 'GeminiClient':
        """从 AIConfig 创建客户端"""
        return cls(api_key=config.api_key,
                   base_url=config.base_url,
                   timeout=config.timeout,
                   transport=transport,
                   logger=logger)

    def build_request(self, contents: List[Dict[str, Any]],
                      system_instruction: Optional[str] = None,
                      response_schema: Optional[Dict[str, Any]] = None,
                      tools: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """构建请求体"""
        body: Dict[str, Any] = {"contents": contents}

        if system_instruction:
            body["systemInstruction"] = {"parts": [text_part(system_instruction)]}

        if response_schema is not None:
            body["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": response_schema
            }

        if tools:
            body["tools"] = tools

        return body

    async def generate_content(self, model: str, contents: List[Dict[str, Any]],
                               system_instruction: Optional[str] = None,
                               response_schema: Optional[Dict[str, Any]] = None,
                               tools: Optional[List[Dict[str, Any]]] = None) -> GenerateResult:
        """调用 generateContent

        Args:
            model: 模型名称
            contents: 有序的对话内容
            system_instruction: 系统指令
            response_schema: 输出 JSON 结构约束
            tools: 工具（如 Google 搜索）

        Returns:
            GenerateResult

        Raises:
            CapacityExhaustedError: 429 / RESOURCE_EXHAUSTED
            RequestFailureError: 其他 HTTP 错误或网络故障
        """
        url = f"{self.base_url}/models/{model}:generateContent"
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json"
        }
        body = self.build_request(contents, system_instruction, response_schema, tools)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise RequestFailureError(f"Gemini 请求超时（{self.timeout} 秒）: {e}") from e
        except httpx.HTTPError as e:
            raise RequestFailureError(f"Gemini 网络错误: {e}") from e

        if response.status_code >= 400:
            raise self._build_error(response)

        try:
            response_json = response.json()
        except ValueError as e:
            raise RequestFailureError(f"Gemini 响应不是 JSON: {response.text[:200]}",
                                      status=response.status_code) from e

        return GenerateResult.from_response(response_json)

    def _build_error(self, response: httpx.Response) -> UpstreamError:
        """将错误响应转换为网关错误

        Gemini 的错误体形如：
        {"error": {"code": 429, "message": "...", "status": "RESOURCE_EXHAUSTED"}}
        """
        error: Dict[str, Any] = {}
        try:
            body = response.json()
            if isinstance(body, dict) and isinstance(body.get("error"), dict):
                error = body["error"]
        except ValueError:
            pass

        code = error.get("status")
        message = error.get("message") or response.text[:200] or response.reason_phrase
        message = f"Gemini API 错误 {response.status_code}: {message}"

        if response.status_code == CAPACITY_STATUS or code == CAPACITY_CODE:
            return CapacityExhaustedError(message, status=response.status_code, code=code, error=error)
        return RequestFailureError(message, status=response.status_code, code=code, error=error)
