"""策略表加载与校验。"""

from __future__ import annotations

import functools
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from liaison.errors import PolicyError
from liaison.models.policy import PolicyTables

logger = logging.getLogger(__name__)

DEFAULT_POLICY_PATH = Path(__file__).parent / "default_policy.yaml"


def parse_policy(data: dict) -> PolicyTables:
    """把已解析的字典校验为 PolicyTables，并做一致性检查。

    Raises:
        PolicyError: 结构不合法或三张表之间相互矛盾。
    """
    try:
        tables = PolicyTables.model_validate(data)
    except ValidationError as e:
        raise PolicyError(f"策略表结构不合法: {e}") from e

    problems = tables.consistency_problems()
    if problems:
        for p in problems:
            logger.error("策略表不一致: %s", p)
        raise PolicyError("；".join(problems))
    return tables


def load_policy(path: str | Path | None = None) -> PolicyTables:
    """从 YAML 加载策略表，缺省使用包内默认表。"""
    if path is None:
        return _load_default_policy()
    return _load_policy_file(Path(path))


@functools.lru_cache(maxsize=1)
def _load_default_policy() -> PolicyTables:
    return _load_policy_file(DEFAULT_POLICY_PATH)


def _load_policy_file(path: Path) -> PolicyTables:
    if not path.exists():
        raise PolicyError(f"策略文件不存在: {path}")
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    tables = parse_policy(data)
    logger.debug(
        "已加载策略表 %s: %d 个 act gate, %d 个检查点, %d 种干预",
        path.name,
        len(tables.act_gates),
        len(tables.checkpoints),
        len(tables.nudge_catalog),
    )
    return tables


__all__ = ["DEFAULT_POLICY_PATH", "load_policy", "parse_policy"]
