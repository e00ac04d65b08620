"""Liaison：多角色互动叙事的实时运行时。

五幕结构状态机 + 关系图 + 干预评估引擎。对白生成、内容安全、
语义记忆都是外部协作者，这里只负责结构状态和打分逻辑。
"""

__version__ = "0.1.0"
