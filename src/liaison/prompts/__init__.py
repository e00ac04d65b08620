"""提示词模板：对白生成与安全复核用的 .txt 文件放在本目录。

模板使用 {variable} 占位符；字面量花括号写成 {{ }}。
"""

from __future__ import annotations

import functools
from pathlib import Path

_PROMPTS_DIR = Path(__file__).parent


@functools.lru_cache(maxsize=32)
def load_prompt(name: str) -> str:
    """按文件名加载模板（可省略 .txt 后缀）。

    Raises:
        FileNotFoundError: 模板不存在。
    """
    filename = name if name.endswith(".txt") else f"{name}.txt"
    filepath = _PROMPTS_DIR / filename
    if not filepath.exists():
        raise FileNotFoundError(f"提示词文件不存在: {filepath}")
    return filepath.read_text(encoding="utf-8").strip()


def format_prompt(name: str, **kwargs: object) -> str:
    return load_prompt(name).format(**kwargs)


__all__ = ["format_prompt", "load_prompt"]
