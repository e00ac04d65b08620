"""叙事状态：关系图、检查点、停滞检测、脆弱度与剧集状态。"""
