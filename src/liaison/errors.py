"""运行时异常定义。

策略拒绝（act gate、节奏、安全）不是异常，走 NudgeDecision / 弃权；
这里只放真正让调用失败的情况。
"""

from __future__ import annotations


class LiaisonError(Exception):
    """所有运行时异常的基类。"""


class EpisodeNotActiveError(LiaisonError):
    """没有进行中的剧集（未开始或已结束）时调用 tick / get_state。"""


class EpisodeSetupError(LiaisonError):
    """剧集初始化参数非法，如角色少于两个。"""


class GenerationError(LiaisonError):
    """对白生成协作者失败，且未启用兜底台词。"""


class PolicyError(LiaisonError):
    """策略表（act gate / checkpoint / nudge 目录）不合法或相互矛盾。"""
