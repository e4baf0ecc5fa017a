"""
Vision 分析器

基于 Gemini 视觉能力解释摄像头画面（白板、图表、题目等）
"""
import base64
import binascii
from pathlib import Path
from typing import Optional, Tuple, Union

from nenua.common import Logger
from .schemas import ANALYSIS_SCHEMA, AnalysisResult


VISION_PROMPT = "Explain visual. JSON: {title, explanation, keyPoints: string[]}"


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """解码 base64 data URL

    Args:
        data_url: 形如 data:image/jpeg;base64,/9j/... 的字符串；
                  也接受不带前缀的纯 base64

    Returns:
        (图片字节, MIME 类型)

    Raises:
        ValueError: 不是合法的 base64 图片
    """
    mime_type = "image/jpeg"
    payload = data_url.strip()

    if payload.startswith("data:"):
        header, sep, payload = payload.partition(",")
        if not sep or ";base64" not in header:
            raise ValueError("图片必须是 base64 data URL")
        mime_type = header[len("data:"):].split(";")[0] or mime_type

    try:
        image_bytes = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"图片 base64 解码失败: {e}") from e

    if not image_bytes:
        raise ValueError("图片为空")

    return image_bytes, mime_type


class VisionAnalyzer:
    """Vision 分析器

    职责：
    1. 读取 / 解码图片（data URL、字节、文件路径）
    2. 通过网关发起带图片的结构化请求
    3. 转换为 AnalysisResult

    无状态：不保存分析历史
    """

    def __init__(self, service, log_dir: Optional[str] = "logs",
                 project_root: Optional[Path] = None):
        """
        Args:
            service: AIService（提供 request_vision_analysis）
            log_dir: 日志目录
            project_root: 项目根目录（用于解析相对路径）
        """
        self.service = service
        self.logger = Logger(log_dir)
        self.project_root = project_root or Path(__file__).parent.parent.parent

    async def analyze(self, image: Union[str, bytes], prompt: str = VISION_PROMPT) -> AnalysisResult:
        """分析图片

        Args:
            image: data URL、图片字节或图片路径
            prompt: 提示词

        Returns:
            AnalysisResult

        Raises:
            ValueError: 图片无法读取或解码
        """
        image_bytes, mime_type = self._load_image(image)
        self.logger.log("ai", "info", f"开始分析图片: {mime_type}, {len(image_bytes)} 字节")

        data = await self.service.request_vision_analysis(image_bytes, prompt, ANALYSIS_SCHEMA,
                                                          mime_type=mime_type)
        analysis = AnalysisResult.from_dict(data)

        self.logger.log("ai", "info", f"分析完成: {analysis.title}")
        return analysis

    def _load_image(self, image: Union[str, bytes]) -> Tuple[bytes, str]:
        """统一图片输入"""
        if isinstance(image, (bytes, bytearray)):
            if not image:
                raise ValueError("图片为空")
            return bytes(image), "image/jpeg"

        if image.startswith("data:"):
            return decode_data_url(image)

        return self._read_file(image)

    def _read_file(self, image_path: str) -> Tuple[bytes, str]:
        """读取图片文件

        Args:
            image_path: 图片路径（相对路径基于项目根目录）

        Returns:
            (图片字节, MIME 类型)
        """
        # 将相对路径转换为绝对路径
        path = Path(image_path)
        if not path.is_absolute():
            path = self.project_root / image_path

        if not path.exists():
            raise ValueError(f"图片不存在: {image_path} (尝试: {path})")

        suffix = path.suffix.lower()
        mime_type = {".png": "image/png", ".webp": "image/webp"}.get(suffix, "image/jpeg")

        with open(path, "rb") as f:
            image_bytes = f.read()

        if not image_bytes:
            raise ValueError(f"图片为空: {path}")

        return image_bytes, mime_type
