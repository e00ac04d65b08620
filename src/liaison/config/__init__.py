"""配置。"""

from liaison.config.settings import LiaisonConfig, ModelConfig, RuntimeConfig, load_config

__all__ = ["LiaisonConfig", "ModelConfig", "RuntimeConfig", "load_config"]
