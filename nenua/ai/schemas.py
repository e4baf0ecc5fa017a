"""
结构化输出：Schema 声明、JSON 解析与结果模型

每个结构化请求都会：
1. 把 Schema 作为 responseSchema 发给模型
2. 在本地解析返回的 JSON，缺失字段补默认值（"" / [] / 嵌套对象）
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from nenua.common import Logger
from .errors import MalformedResponseError
from .gemini_client import Source


# ==================== Schema 声明 ====================

def _string() -> Dict[str, Any]:
    return {"type": "STRING"}


def _string_list() -> Dict[str, Any]:
    return {"type": "ARRAY", "items": _string()}


CORNELL_NOTE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "title": _string(),
        "topic": _string(),
        "date": _string(),
        "cues": _string_list(),
        "notes": _string_list(),
        "summary": _string()
    },
    "required": ["title", "topic", "date", "cues", "notes", "summary"]
}

WEATHER_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "location": _string(),
        "temperature": _string(),
        "condition": _string(),
        "humidity": _string(),
        "advisory": _string(),
        "forecast": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "day": _string(),
                    "temp": _string(),
                    "condition": _string()
                }
            }
        }
    },
    "required": ["location", "temperature", "condition", "humidity", "forecast", "advisory"]
}

ANALYSIS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "title": _string(),
        "explanation": _string(),
        "keyPoints": _string_list()
    },
    "required": ["title", "explanation", "keyPoints"]
}


class TriageLevel(Enum):
    """分诊级别"""
    SELF_CARE = "Self-Care"
    CONSULT_PHARMACIST = "Consult Pharmacist"
    SEE_A_DOCTOR = "See a Doctor"

    @classmethod
    def parse(cls, value: Any) -> 'TriageLevel':
        """宽松解析分诊级别

        忽略大小写、空格和连字符；无法识别时返回最谨慎的 SEE_A_DOCTOR
        """
        if isinstance(value, TriageLevel):
            return value

        key = "".join(ch for ch in str(value or "").lower() if ch.isalpha())
        aliases = {
            "selfcare": cls.SELF_CARE,
            "consultpharmacist": cls.CONSULT_PHARMACIST,
            "pharmacist": cls.CONSULT_PHARMACIST,
            "seeadoctor": cls.SEE_A_DOCTOR,
            "seedoctor": cls.SEE_A_DOCTOR,
            "doctor": cls.SEE_A_DOCTOR,
        }
        return aliases.get(key, cls.SEE_A_DOCTOR)


HEALTH_ADVICE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "advice": _string(),
        "triageLevel": {
            "type": "STRING",
            "format": "enum",
            "enum": [level.value for level in TriageLevel]
        },
        "tips": _string_list()
    },
    "required": ["advice", "triageLevel", "tips"]
}


# ==================== 解析 ====================

def default_for(schema: Dict[str, Any]) -> Any:
    """根据 Schema 类型返回默认值"""
    schema_type = str(schema.get("type", "")).upper()
    if schema_type == "ARRAY":
        return []
    if schema_type == "OBJECT":
        return fill_defaults({}, schema)
    if schema_type in ("NUMBER", "INTEGER"):
        return 0
    if schema_type == "BOOLEAN":
        return False
    return ""


def fill_defaults(data: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
    """按 Schema 补齐缺失字段（递归处理嵌套对象和对象数组）

    Args:
        data: 已解析的 JSON 对象
        schema: OBJECT 类型的 Schema

    Returns:
        补齐后的新字典（保留 Schema 之外的字段）
    """
    result = dict(data)

    for name, prop in (schema.get("properties") or {}).items():
        value = result.get(name)
        prop_type = str(prop.get("type", "")).upper()

        if value is None:
            result[name] = default_for(prop)
        elif prop_type == "OBJECT" and isinstance(value, dict):
            result[name] = fill_defaults(value, prop)
        elif prop_type == "ARRAY":
            if not isinstance(value, list):
                result[name] = []
                continue
            items = prop.get("items") or {}
            if str(items.get("type", "")).upper() == "OBJECT":
                result[name] = [fill_defaults(item, items) for item in value if isinstance(item, dict)]
            elif str(items.get("type", "")).upper() == "STRING":
                result[name] = [str(item) for item in value if item is not None]
        elif prop_type == "STRING" and not isinstance(value, str):
            result[name] = str(value)

    return result


def parse_payload(text: Optional[str], schema: Dict[str, Any],
                  lenient: bool = False, logger: Optional[Logger] = None) -> Dict[str, Any]:
    """解析模型返回的 JSON 文本

    空文本视为 {}；缺失字段补默认值。

    Args:
        text: 模型返回的文本
        schema: 声明的输出 Schema
        lenient: True 时无法解析的文本返回全默认值
        logger: 日志工具

    Returns:
        符合 Schema 的字典

    Raises:
        MalformedResponseError: 文本不是 JSON 对象（lenient=False 时）
    """
    raw = (text or "").strip() or "{}"

    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"期望 JSON 对象，实际为 {type(data).__name__}")
    except ValueError as e:
        if not lenient:
            raise MalformedResponseError(f"无法解析 AI 响应: {e}", raw_text=raw) from e
        if logger:
            logger.log("ai", "warning", f"无法解析 JSON，使用默认值: {raw[:100]}")
        data = {}

    return fill_defaults(data, schema)


# ==================== 结果模型 ====================

@dataclass
class CornellNote:
    """康奈尔笔记"""
    title: str = ""
    topic: str = ""
    date: str = ""
    cues: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    summary: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CornellNote':
        data = fill_defaults(data, CORNELL_NOTE_SCHEMA)
        return cls(
            title=data["title"],
            topic=data["topic"],
            date=data["date"],
            cues=data["cues"],
            notes=data["notes"],
            summary=data["summary"]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "topic": self.topic,
            "date": self.date,
            "cues": list(self.cues),
            "notes": list(self.notes),
            "summary": self.summary
        }


@dataclass
class ForecastDay:
    """单日预报"""
    day: str = ""
    temp: str = ""
    condition: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"day": self.day, "temp": self.temp, "condition": self.condition}


@dataclass
class WeatherInfo:
    """天气与学生出行提醒"""
    location: str = ""
    temperature: str = ""
    condition: str = ""
    humidity: str = ""
    forecast: List[ForecastDay] = field(default_factory=list)
    advisory: str = ""
    sources: List[Source] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], sources: Optional[List[Source]] = None) -> 'WeatherInfo':
        data = fill_defaults(data, WEATHER_SCHEMA)
        return cls(
            location=data["location"],
            temperature=data["temperature"],
            condition=data["condition"],
            humidity=data["humidity"],
            forecast=[ForecastDay(day=item["day"], temp=item["temp"], condition=item["condition"])
                      for item in data["forecast"]],
            advisory=data["advisory"],
            sources=list(sources or [])
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location,
            "temperature": self.temperature,
            "condition": self.condition,
            "humidity": self.humidity,
            "forecast": [day.to_dict() for day in self.forecast],
            "advisory": self.advisory,
            "sources": [source.to_dict() for source in self.sources]
        }


@dataclass
class AnalysisResult:
    """视觉分析结果"""
    title: str = ""
    explanation: str = ""
    key_points: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisResult':
        data = fill_defaults(data, ANALYSIS_SCHEMA)
        return cls(title=data["title"], explanation=data["explanation"], key_points=data["keyPoints"])

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "explanation": self.explanation, "keyPoints": list(self.key_points)}


@dataclass
class HealthAdvice:
    """健康建议"""
    advice: str = ""
    triage_level: TriageLevel = TriageLevel.SEE_A_DOCTOR
    tips: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealthAdvice':
        data = fill_defaults(data, HEALTH_ADVICE_SCHEMA)
        return cls(advice=data["advice"],
                   triage_level=TriageLevel.parse(data["triageLevel"]),
                   tips=data["tips"])

    def to_dict(self) -> Dict[str, Any]:
        return {"advice": self.advice, "triageLevel": self.triage_level.value, "tips": list(self.tips)}
