"""
Configuration management.

Configuration file parsing, environment resolution, typed engine settings.
"""

from bimsync.config.loader import Config, load_config
from bimsync.config.resolver import resolve_config
from bimsync.config.settings import (
    DiscoverySettings,
    RuntimeSettings,
    Settings,
    SourceSettings,
    SubscriptionSettings,
    TranslationSettings,
    load_settings,
)

__all__ = [
    "load_config",
    "Config",
    "resolve_config",
    "load_settings",
    "Settings",
    "SourceSettings",
    "TranslationSettings",
    "RuntimeSettings",
    "SubscriptionSettings",
    "DiscoverySettings",
]
