"""OutputManager：把一个剧集的导出记录写成 JSON 文件。

目录结构：
output/<episode_id 前 8 位>/
├── episode.json        # 剧集记录
├── scenes.json         # 场景记录
├── turns.json          # 逐句台词记录
├── evaluations.json    # 评估日志
├── telemetry.json      # 遥测事件流
└── metadata.json       # 运行元数据
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class OutputManager:
    def __init__(self, output_dir: str | Path, episode_id: str):
        self.root = Path(output_dir) / episode_id[:8]
        self.root.mkdir(parents=True, exist_ok=True)
        self._metadata: dict[str, Any] = {
            "episode_id": episode_id,
            "created_at": datetime.now().isoformat(),
            "files": [],
        }
        self._save_metadata()

    def save_records(self, name: str, records: BaseModel | Iterable[BaseModel]) -> Path:
        """写入一组（或一条）记录，返回文件路径。"""
        if isinstance(records, BaseModel):
            data: Any = records.model_dump(mode="json")
            count = 1
        else:
            data = [r.model_dump(mode="json") for r in records]
            count = len(data)
        filepath = self.root / f"{name}.json"
        self._write_json(filepath, data)

        self._metadata["files"].append({
            "name": filepath.name,
            "records": count,
            "timestamp": datetime.now().isoformat(),
        })
        self._save_metadata()
        logger.info("已写入 %s (%d 条)", filepath, count)
        return filepath

    def update_metadata(self, **fields: Any) -> None:
        self._metadata.update(fields)
        self._save_metadata()

    def _write_json(self, filepath: Path, data: Any) -> None:
        filepath.write_text(
            json.dumps(data, ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )

    def _save_metadata(self) -> None:
        self._metadata["updated_at"] = datetime.now().isoformat()
        self._write_json(self.root / "metadata.json", self._metadata)
