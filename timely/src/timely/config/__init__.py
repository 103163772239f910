from .settings import EngineDefaults, JobDefaults, Settings, get_settings, reset_settings

__all__ = [
    "EngineDefaults",
    "JobDefaults",
    "Settings",
    "get_settings",
    "reset_settings",
]
