from .settings import (
    LoaderSettings,
    ResourceSettings,
    get_settings,
    reset_settings,
    resolve_resource_settings,
)

__all__ = [
    "LoaderSettings",
    "ResourceSettings",
    "get_settings",
    "reset_settings",
    "resolve_resource_settings",
]
