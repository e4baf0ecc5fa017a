"""
通用工具类
"""
import os
import json
from pathlib import Path
from datetime import datetime
from typing import Optional, Union

from dotenv import load_dotenv

# 项目根目录
BASE_DIR = Path(__file__).parent.parent

# 加载 .env 文件
load_dotenv(os.path.join(BASE_DIR, '.env'))


class Logger:
    """简单日志工具

    控制台输出一行文本；配置了 log_dir 时，同时按天写入 JSON Lines 文件
    """

    def __init__(self, log_dir: Optional[Union[str, Path]] = None):
        self.log_dir = Path(log_dir) if log_dir else None

    def log(self, module: str, level: str, message: str, **kwargs):
        """记录日志"""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        log_entry = {
            "timestamp": timestamp,
            "module": module,
            "level": level,
            "message": message,
            **kwargs
        }

        # 输出到控制台
        print(f"[{timestamp}] [{module}] {level}: {message}")

        # 输出到文件（可选）
        if self.log_dir:
            log_file = self.log_dir / f"{datetime.now().strftime('%Y%m%d')}.log"
            try:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                with open(log_file, "a", encoding="utf-8") as f:
                    f.write(json.dumps(log_entry, ensure_ascii=False, default=str) + "\n")
            except OSError as e:
                print(f"写入日志失败: {e}")


def env_bool(name: str, default: bool = False) -> bool:
    """读取布尔型环境变量（1/true/yes/on 视为真）"""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
