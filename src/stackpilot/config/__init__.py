"""
stackpilot configuration.

Settings are read from STACKPILOT_* environment variables and an optional
.env file. Credentials never live here: manifests reference them through
``${env:NAME}`` or ``${secret:ID#KEY}``.
"""

from stackpilot.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
