"""产出物管理：剧集导出记录的 JSON 落盘。"""

from liaison.output.manager import OutputManager

__all__ = ["OutputManager"]
