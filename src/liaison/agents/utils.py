"""LLM 调用工具函数。"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)

# 可重试的异常：网络/限流/临时故障
RETRYABLE_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    OSError,
)


def invoke_with_retry(
    model: BaseChatModel,
    messages: list[BaseMessage],
    max_retries: int = 2,
    base_delay: float = 1.0,
    operation_name: str = "invoke",
) -> BaseMessage:
    """带指数退避的 LLM 调用。只重试连接/超时类异常，其余直接抛出。"""
    for attempt in range(max_retries + 1):
        try:
            return model.invoke(messages)
        except RETRYABLE_EXCEPTIONS as e:
            if attempt >= max_retries:
                logger.error("%s 重试 %d 次后仍失败: %s", operation_name, max_retries, e)
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                "%s 第 %d 次失败 (%s)，%s 秒后重试",
                operation_name,
                attempt + 1,
                type(e).__name__,
                delay,
            )
            time.sleep(delay)
    raise RuntimeError("invoke_with_retry unexpected state")


def extract_response_text(response: BaseMessage) -> str:
    """从响应消息中取纯文本。

    OpenAI 直接返回 str；Gemini 等返回 list[dict]，需要拼接其中的 text。
    """
    content: Any = response.content
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return str(content)


def _strip_code_fence(text: str) -> str:
    if "```" not in text:
        return text
    start = text.index("```") + 3
    # 跳过 ```json 这类语言标记行
    newline = text.find("\n", start)
    if newline != -1 and newline - start < 20:
        start = newline + 1
    end = text.find("```", start)
    return text[start:end].strip() if end != -1 else text[start:].strip()


def extract_json(text: str) -> Any:
    """从 LLM 输出中提取 JSON（支持 markdown 代码块与前后夹杂的说明文字）。

    Raises:
        json.JSONDecodeError: 找不到可解析的 JSON。
    """
    text = _strip_code_fence(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        for open_char, close_char in (("{", "}"), ("[", "]")):
            first = text.find(open_char)
            last = text.rfind(close_char)
            if first != -1 and last > first:
                try:
                    return json.loads(text[first : last + 1])
                except json.JSONDecodeError:
                    continue
        raise
