"""停滞检测与台词文本工具。"""

from __future__ import annotations

import itertools
import re

from liaison.models.episode import SpokenLine

# 拉丁词按整词切分，汉字按单字切分
_TOKEN_RE = re.compile(r"[a-z0-9']+|[\u4e00-\u9fff]")
_LATIN_RE = re.compile(r"[a-z0-9']+")
_CJK_RE = re.compile(r"[\u4e00-\u9fff]")

# 一个汉字大约相当于 0.6 个英文词的朗读时长
_CJK_WORD_WEIGHT = 0.6


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def text_similarity(a: str, b: str) -> float:
    """词集 Jaccard 相似度；两句都没有可切分的词时视为相同。"""
    set_a, set_b = set(tokenize(a)), set(tokenize(b))
    union = set_a | set_b
    if not union:
        return 1.0
    return len(set_a & set_b) / len(union)


def estimate_line_seconds(text: str, words_per_second: float, cap: float) -> float:
    """按语速估算朗读时长，不超过 cap。"""
    lowered = text.lower()
    words = len(_LATIN_RE.findall(lowered)) + _CJK_WORD_WEIGHT * len(_CJK_RE.findall(lowered))
    return min(cap, words / words_per_second)


def is_plateau(
    lines: list[SpokenLine],
    delta_threshold: float,
    similarity_threshold: float,
) -> bool:
    """最近几句是否构成停滞：平均变化幅度过小，或任意两句高度重复。"""
    if not lines:
        return False
    avg_magnitude = sum(line.deltas.total_magnitude() for line in lines) / (len(lines) * 4)
    if avg_magnitude < delta_threshold:
        return True
    return any(
        text_similarity(a.text, b.text) > similarity_threshold
        for a, b in itertools.combinations(lines, 2)
    )


def update_plateau_counter(
    counter: int,
    recent_lines: list[SpokenLine],
    window: int,
    delta_threshold: float,
    similarity_threshold: float,
) -> tuple[int, bool]:
    """返回 (新计数, 本次是否检测到停滞)。

    台词不足 window 句时不判定，计数保持不变。
    """
    if len(recent_lines) < window:
        return counter, False
    if is_plateau(recent_lines[-window:], delta_threshold, similarity_threshold):
        return counter + 1, True
    return 0, False
