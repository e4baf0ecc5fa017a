"""
AI 服务 - 统一的 AI 功能入口

职责：
1. 将各功能的请求转换为 Gemini 调用
2. 所有网络调用统一经过 RetryPolicy
3. 解析结构化输出并返回领域对象
"""
from typing import Any, Dict, Optional, Tuple, Union

from nenua.common import Logger
from .ai_config import AIConfig
from .chat import EMPTY_REPLY_TEXT, ChatRole, ChatSession, ChatTurn, create_chat_session
from .gemini_client import (
    GOOGLE_SEARCH_TOOL,
    GeminiClient,
    GenerateResult,
    content,
    image_part,
    text_part,
)
from .retry import RetryPolicy
from .schemas import (
    CORNELL_NOTE_SCHEMA,
    HEALTH_ADVICE_SCHEMA,
    WEATHER_SCHEMA,
    AnalysisResult,
    CornellNote,
    HealthAdvice,
    WeatherInfo,
    parse_payload,
)
from .vision_analyzer import VisionAnalyzer


NOTES_SOURCE_LIMIT = 5000

FORMAT_PROMPT = 'Format this into JSON: "{text}"'


class AIService:
    """AI 服务（统一入口 / 网关）

    职责：
    1. 管理 Gemini 客户端和重试策略（启动时显式注入）
    2. 提供聊天、结构化请求、视觉请求
    3. 提供笔记、天气、视觉、健康等功能入口

    设计原则：
    - 无状态：会话由调用方持有，网关不保存历史
    - 统一重试：所有网络调用经过同一 RetryPolicy
    - 错误原样抛出：不吞掉、不包装上游错误
    """

    def __init__(self, config: AIConfig, client: Optional[GeminiClient] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        """
        Args:
            config: AI 配置对象
            client: Gemini 客户端（None 时按配置创建）
            retry_policy: 重试策略（None 时按配置创建）

        Raises:
            ConfigurationError: 未配置 API Key 且未注入客户端
        """
        self.config = config
        self.logger = Logger(config.log_dir)
        self.client = client or GeminiClient.from_config(config, logger=self.logger)
        self.retry = retry_policy or RetryPolicy.from_config(config, logger=self.logger)

        # Vision 分析器（延迟初始化）
        self._vision_analyzer: Optional[VisionAnalyzer] = None

        self.logger.log("ai", "info", f"AIService 初始化 - provider: gemini, model: {config.model}")

    def vision(self) -> VisionAnalyzer:
        """获取 Vision 分析器

        Returns:
            VisionAnalyzer 实例
        """
        if self._vision_analyzer is None:
            self._vision_analyzer = VisionAnalyzer(self, log_dir=self.config.log_dir)

        return self._vision_analyzer

    # ==================== 网关操作 ====================

    def create_chat_session(self, history=()) -> ChatSession:
        """创建聊天会话（不发起网络请求）"""
        return create_chat_session(history)

    async def send_message(self, session: ChatSession, text: str) -> Tuple[str, ChatSession]:
        """发送聊天消息

        上游请求的 contents 为 [历史..., 新消息]，顺序和角色保持不变

        Args:
            session: 当前会话
            text: 用户消息

        Returns:
            (回复文本, 追加了本轮问答的新会话)
        """
        user_turn = ChatTurn(ChatRole.USER, text)
        contents = session.to_contents() + [user_turn.to_content()]

        result = await self.retry.run(lambda: self.client.generate_content(
            self.config.model,
            contents,
            system_instruction=session.system_instruction
        ))

        reply = result.text or EMPTY_REPLY_TEXT
        return reply, session.with_turns(user_turn, ChatTurn(ChatRole.MODEL, reply))

    async def request_structured(self, prompt: str, schema: Dict[str, Any],
                                 retrieval_enabled: bool = False,
                                 model: Optional[str] = None) -> Dict[str, Any]:
        """结构化请求

        retrieval_enabled 时分两步：先用 Google 搜索获取文本，再格式化为 JSON。
        两步各自重试；第一步失败时不会执行第二步。

        Args:
            prompt: 提示词
            schema: 输出 Schema
            retrieval_enabled: 是否启用检索
            model: 模型（默认 config.model）

        Returns:
            符合 Schema 的字典
        """
        if retrieval_enabled:
            grounded = await self._grounded(prompt, model)
            prompt = FORMAT_PROMPT.format(text=grounded.text)

        return await self._complete_json(content("user", text_part(prompt)), schema, model)

    async def request_vision_analysis(self, image_bytes: bytes, prompt: str,
                                      schema: Dict[str, Any],
                                      mime_type: str = "image/jpeg") -> Dict[str, Any]:
        """带图片的结构化请求（图片在前，提示词在后）"""
        request_content = content("user", image_part(image_bytes, mime_type), text_part(prompt))
        return await self._complete_json(request_content, schema)

    async def _grounded(self, prompt: str, model: Optional[str] = None) -> GenerateResult:
        """检索增强的自由文本请求"""
        return await self.retry.run(lambda: self.client.generate_content(
            model or self.config.model,
            [content("user", text_part(prompt))],
            tools=[GOOGLE_SEARCH_TOOL]
        ))

    async def _complete_json(self, request_content: Dict[str, Any], schema: Dict[str, Any],
                             model: Optional[str] = None) -> Dict[str, Any]:
        """Schema 约束请求 + 本地解析（解析在重试内，解析错误不重试）"""
        async def call():
            result = await self.client.generate_content(
                model or self.config.model,
                [request_content],
                response_schema=schema
            )
            return parse_payload(result.text, schema,
                                 lenient=self.config.lenient_json, logger=self.logger)

        return await self.retry.run(call)

    # ==================== 功能入口 ====================

    async def generate_cornell_notes(self, source: str) -> CornellNote:
        """将学习材料整理为康奈尔笔记（材料截断为前 5000 字符）"""
        prompt = f"Synthesize this into Cornell Notes JSON: {source[:NOTES_SOURCE_LIMIT]}"
        data = await self.request_structured(prompt, CORNELL_NOTE_SCHEMA, model=self.config.notes_model)
        return CornellNote.from_dict(data)

    async def fetch_weather_prep(self, location: Optional[str] = None) -> WeatherInfo:
        """获取天气和学生提醒

        两步请求：检索天气（附 5 个词的吐槽）→ 格式化为 JSON；检索来源一并返回
        """
        location = (location or "").strip() or self.config.default_location

        grounded = await self._grounded(
            f"Weather for {location}. Also provide a 5-word snarky roast for a student."
        )
        prompt = (
            FORMAT_PROMPT.format(text=grounded.text)
            + ". Structure: {location, temperature, condition, humidity, "
              "forecast: [{day, temp, condition}], advisory}"
        )
        data = await self._complete_json(content("user", text_part(prompt)), WEATHER_SCHEMA)

        weather = WeatherInfo.from_dict(data, sources=grounded.sources)
        self.logger.log("ai", "info", f"天气获取完成: {weather.location} ({len(weather.sources)} 个来源)")
        return weather

    async def analyze_camera_frame(self, image: Union[str, bytes]) -> AnalysisResult:
        """解释摄像头画面（data URL / 字节 / 文件路径）"""
        return await self.vision().analyze(image)

    async def get_health_advice(self, symptoms: str) -> HealthAdvice:
        """学生健康建议（含分诊级别）"""
        prompt = (
            f'User says: "{symptoms}". Act as a student wellness AI. Provide advice for this symptom, '
            "considering common student issues like posture, screen time, or exams. "
            "Structure JSON as {advice: string, triageLevel: string "
            "(Self-Care, Consult Pharmacist, See a Doctor), tips: string[]}"
        )
        data = await self.request_structured(prompt, HEALTH_ADVICE_SCHEMA)
        return HealthAdvice.from_dict(data)

    def get_status(self) -> dict:
        """获取服务状态

        Returns:
            状态字典
        """
        return {
            "provider": "gemini",
            "model": self.config.model,
            "notes_model": self.config.notes_model,
            "max_attempts": self.retry.max_attempts,
            "vision_available": self._vision_analyzer is not None
        }


# ==================== 工厂函数 ====================

def create_ai_service(config: Optional[AIConfig] = None,
                      client: Optional[GeminiClient] = None,
                      retry_policy: Optional[RetryPolicy] = None) -> AIService:
    """创建 AI 服务

    Args:
        config: AI 配置对象（None 时从环境变量读取）
        client: Gemini 客户端（测试时注入）
        retry_policy: 重试策略

    Returns:
        AIService 实例

    Raises:
        ConfigurationError: 未配置 API Key
    """
    return AIService(config or AIConfig.from_env(), client=client, retry_policy=retry_policy)
