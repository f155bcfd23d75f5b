from .config import Settings, settings
from .paths import get_config_env, resolve_config_path
from .runtime_config import RuntimeConfig, runtime_config

__all__ = [
    "Settings",
    "settings",
    "get_config_env",
    "resolve_config_path",
    "RuntimeConfig",
    "runtime_config",
]
