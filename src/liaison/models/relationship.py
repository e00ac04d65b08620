"""关系图数据模型。

每一对角色（无序）持有四个 [0,1] 区间内的亲密度维度：
吸引 attraction、信任 trust、张力 tension、安心 comfort。
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# 四个维度的固定顺序（遍历、导出都按这个顺序）
DIMENSIONS: tuple[str, ...] = ("attraction", "trust", "tension", "comfort")


def pair_key(a: str, b: str) -> str:
    """无序角色对的键：按字典序排序后用 '-' 连接。"""
    first, second = sorted((a, b))
    return f"{first}-{second}"


class ChemistryDeltas(BaseModel):
    """一句台词对关系四维度造成的变化量（典型幅度 ±0.15）。"""

    attraction: float = Field(default=0.0, description="吸引变化量")
    trust: float = Field(default=0.0, description="信任变化量")
    tension: float = Field(default=0.0, description="张力变化量")
    comfort: float = Field(default=0.0, description="安心变化量")

    def total_magnitude(self) -> float:
        """四个维度绝对值之和。"""
        return sum(abs(getattr(self, d)) for d in DIMENSIONS)

    def mean_magnitude(self) -> float:
        """四个维度绝对值的平均。"""
        return self.total_magnitude() / len(DIMENSIONS)


class RelationshipPair(BaseModel):
    """一对角色的关系记录。每次修改后必须 clamp 回 [0,1]。"""

    attraction: float = Field(default=0.1, ge=0.0, le=1.0, description="吸引 0-1")
    trust: float = Field(default=0.1, ge=0.0, le=1.0, description="信任 0-1")
    tension: float = Field(default=0.2, ge=0.0, le=1.0, description="张力 0-1")
    comfort: float = Field(default=0.1, ge=0.0, le=1.0, description="安心 0-1")
