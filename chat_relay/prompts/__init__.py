"""提示词加载工具。

提示词以 markdown 文件存放在本目录，按名称读取：
- system: 每轮主回复前置的系统指令。
- thread_title: 生成会话标题时使用的指令。
"""

from functools import lru_cache
from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    """按名称读取提示词文本（去掉首尾空白）。"""

    fname = PROMPTS_DIR / f"{name}.md"
    return fname.read_text(encoding="utf-8").strip()
