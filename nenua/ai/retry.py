"""
重试策略

只对配额耗尽（429 / RESOURCE_EXHAUSTED）进行指数退避重试：
- 最多 max_attempts 次（默认 1 次首调 + 2 次重试）
- 第 i 次（从 0 开始）失败后等待 2^i * base_delay + [0, max_jitter) 秒
- 重试用尽后原样抛出最后一次的异常（不包装）
- 其他错误立即抛出
"""
import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from nenua.common import Logger
from .errors import is_capacity_exhausted


T = TypeVar("T")


class RetryPolicy:
    """有界指数退避重试

    纯高阶操作：接收任意无参异步操作，不关心它做什么，
    因此聊天、结构化请求、视觉请求共用同一策略。
    """

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 3.0,
                 max_jitter: float = 1.0,
                 classifier: Callable[[BaseException], bool] = is_capacity_exhausted,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 jitter: Callable[[], float] = random.random,
                 logger: Optional[Logger] = None):
        """
        Args:
            max_attempts: 最大尝试次数（含首次）
            base_delay: 退避基数（秒）
            max_jitter: 随机抖动上限（秒）
            classifier: 判断异常是否可重试
            sleep: 异步等待函数（测试时可替换）
            jitter: 返回 [0, 1) 随机数的函数（测试时可替换）
            logger: 日志工具
        """
        if max_attempts < 1:
            raise ValueError("max_attempts 必须 >= 1")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self.classifier = classifier
        self._sleep = sleep
        self._jitter = jitter
        self.logger = logger or Logger()

    def backoff_delay(self, attempt: int) -> float:
        """计算第 attempt 次（从 0 开始）失败后的等待时间（秒）"""
        return (2 ** attempt) * self.base_delay + self._jitter() * self.max_jitter

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """执行操作（带重试）

        Args:
            operation: 无参异步操作，每次尝试都会重新调用

        Returns:
            操作结果

        Raises:
            最后一次尝试的原始异常
        """
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as e:
                if not self.classifier(e) or attempt >= self.max_attempts - 1:
                    raise

                delay = self.backoff_delay(attempt)
                self.logger.log("ai", "warning",
                                f"配额耗尽（第 {attempt + 1}/{self.max_attempts} 次），"
                                f"{delay:.2f} 秒后重试: {e}")
                await self._sleep(delay)

        # max_attempts >= 1，循环内必然返回或抛出
        raise RuntimeError("unreachable")

    @classmethod
    def from_config(cls, config, logger: Optional[Logger] = None) -> 'RetryPolicy':
        """从 AIConfig 创建"""
        return cls(max_attempts=config.max_attempts,
                   base_delay=config.base_delay,
                   max_jitter=config.max_jitter,
                   logger=logger)
