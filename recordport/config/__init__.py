from .loader import AppConfig, ConfigError, DatabaseConfig, ExportConfig, StateConfig, load_config

__all__ = [
    "AppConfig",
    "ConfigError",
    "DatabaseConfig",
    "ExportConfig",
    "StateConfig",
    "load_config",
]
