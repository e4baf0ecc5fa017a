"""
聊天会话模型

会话是调用方持有的不可变值：网关不保存任何历史，
每次发送都返回新的会话（原会话不变）。
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Tuple, Union

from .gemini_client import content, text_part


TUTOR_SYSTEM_INSTRUCTION = (
    "You are Nenua AI, a witty and ultra-intelligent AI tutor for students. "
    "You help with study schedules, explain complex concepts simply, provide motivational roasts, "
    "and help brainstorm project ideas. Keep responses concise but impactful. Use emojis occasionally. "
    "Focus on being a supportive yet demanding academic companion."
)

GREETING_TEXT = (
    "Sup, scholar? Ready to turn that brain fog into high-fidelity neural links? "
    "What we grinding today?"
)

# 模型返回空文本时的回复
EMPTY_REPLY_TEXT = "Neural link failure."


class ChatRole(Enum):
    """对话角色"""
    USER = "user"
    MODEL = "model"

    @classmethod
    def parse(cls, value: Union[str, 'ChatRole']) -> 'ChatRole':
        """解析角色（assistant 视为 model）

        Raises:
            ValueError: 未知角色
        """
        if isinstance(value, ChatRole):
            return value
        if value == "assistant":
            return cls.MODEL
        return cls(value)


@dataclass(frozen=True)
class ChatTurn:
    """一轮对话"""
    role: ChatRole
    text: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChatTurn':
        """从 {role, text} 字典创建

        Raises:
            ValueError: 角色未知或 text 不是字符串
        """
        if not isinstance(data, dict):
            raise ValueError(f"对话记录必须是对象: {data!r}")
        text = data.get("text")
        if not isinstance(text, str):
            raise ValueError(f"对话记录缺少 text: {data!r}")
        return cls(role=ChatRole.parse(data.get("role")), text=text)

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "text": self.text}

    def to_content(self) -> Dict[str, Any]:
        """转换为 Gemini contents 条目"""
        return content(self.role.value, text_part(self.text))


@dataclass(frozen=True)
class ChatSession:
    """聊天会话（不可变）"""
    system_instruction: str = TUTOR_SYSTEM_INSTRUCTION
    history: Tuple[ChatTurn, ...] = field(default_factory=tuple)

    def with_turns(self, *turns: ChatTurn) -> 'ChatSession':
        return ChatSession(system_instruction=self.system_instruction,
                           history=self.history + tuple(turns))

    def to_contents(self) -> List[Dict[str, Any]]:
        return [turn.to_content() for turn in self.history]

    def to_list(self) -> List[Dict[str, str]]:
        return [turn.to_dict() for turn in self.history]


def create_chat_session(history: Iterable[Union[ChatTurn, Dict[str, Any]]] = (),
                        system_instruction: str = TUTOR_SYSTEM_INSTRUCTION) -> ChatSession:
    """创建聊天会话（不发起网络请求）

    Args:
        history: 有序的历史记录（ChatTurn 或 {role, text} 字典）
        system_instruction: 系统指令（导师人设）

    Returns:
        ChatSession

    Raises:
        ValueError: 历史记录格式错误
    """
    turns = tuple(turn if isinstance(turn, ChatTurn) else ChatTurn.from_dict(turn)
                  for turn in history)
    return ChatSession(system_instruction=system_instruction, history=turns)


def default_history() -> List[Dict[str, str]]:
    """没有缓存历史时的初始对话（一条问候）"""
    return [ChatTurn(ChatRole.MODEL, GREETING_TEXT).to_dict()]
