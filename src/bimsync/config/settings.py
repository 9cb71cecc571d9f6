"""
Typed settings for the synchronization engine.

Each section of config.yaml maps onto one frozen dataclass; absent sections
fall back to the defaults below. Values are validated on construction so a
bad ceiling fails at startup rather than mid-poll.

Example config.yaml::

    sources:
      acc:
        base_url: https://developer.api.autodesk.com
      collab:
        base_url: https://app.speckle.systems
    translation:
      initial_backoff_ms: 2000
      max_backoff_ms: 30000
      max_attempts: 60
      max_elapsed_s: 1800
    runtime:
      url: http://localhost:3000/wasm/web-ifc.wasm
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

from bimsync.config.loader import Config
from bimsync.exceptions import ConfigurationError
from bimsync.sources.types import SourceKind

DEFAULT_BASE_URLS = {
    SourceKind.ACC: "https://developer.api.autodesk.com",
    SourceKind.COLLAB: "https://app.speckle.systems",
}

WASM_MAGIC = b"\x00asm"


@dataclass(frozen=True)
class SourceSettings:
    base_url: str
    timeout_s: float = 30.0

    def __post_init__(self):
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got '{self.base_url}'")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")


@dataclass(frozen=True)
class TranslationSettings:
    """Polling limits for derivative translation jobs."""

    initial_backoff_ms: int = 2000
    max_backoff_ms: int = 30000
    max_attempts: int = 60
    max_elapsed_s: float = 1800.0
    # Fractional jitter applied to each sleep (0.2 = ±20%)
    jitter: float = 0.2

    def __post_init__(self):
        if self.initial_backoff_ms <= 0:
            raise ValueError("initial_backoff_ms must be > 0")
        if self.max_backoff_ms < self.initial_backoff_ms:
            raise ValueError("max_backoff_ms must be >= initial_backoff_ms")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.max_elapsed_s <= 0:
            raise ValueError("max_elapsed_s must be > 0")
        if not 0.0 <= self.jitter < 1.0:
            raise ValueError("jitter must be in [0, 1)")


@dataclass(frozen=True)
class RuntimeSettings:
    """Where and how to fetch the geometry parsing runtime."""

    url: str = "http://localhost:3000/wasm/web-ifc.wasm"
    max_attempts: int = 3
    retry_delay_s: float = 1.0
    timeout_s: float = 60.0
    magic: bytes = WASM_MAGIC

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.retry_delay_s < 0:
            raise ValueError("retry_delay_s must be >= 0")
        if isinstance(self.magic, str):
            object.__setattr__(self, "magic", self.magic.encode("latin-1"))


@dataclass(frozen=True)
class SubscriptionSettings:
    poll_interval_s: float = 10.0
    use_websocket: bool = True

    def __post_init__(self):
        if self.poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be > 0")


@dataclass(frozen=True)
class DiscoverySettings:
    """Retry limits for idempotent discovery reads."""

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")


@dataclass(frozen=True)
class Settings:
    sources: dict[SourceKind, SourceSettings] = field(
        default_factory=lambda: {kind: SourceSettings(base_url=url) for kind, url in DEFAULT_BASE_URLS.items()}
    )
    translation: TranslationSettings = field(default_factory=TranslationSettings)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)
    subscriptions: SubscriptionSettings = field(default_factory=SubscriptionSettings)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)

    def source(self, kind: SourceKind | str) -> SourceSettings:
        return self.sources[SourceKind(kind)]


def _section(cls, data: dict[str, Any] | None, **overrides):
    """Build a settings dataclass from a config section, ignoring unknown keys."""
    allowed = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in (data or {}).items() if k in allowed}
    kwargs.update(overrides)
    return cls(**kwargs)


def load_settings(config: Config | dict[str, Any] | None = None) -> Settings:
    """
    Build typed Settings from a Config (or raw dict).

    Raises:
        ConfigurationError: If any section fails validation
    """
    if config is None:
        data: dict[str, Any] = {}
    elif isinstance(config, Config):
        data = config.data
    else:
        data = config

    try:
        sources_cfg = data.get("sources") or {}
        sources = {}
        for kind, default_url in DEFAULT_BASE_URLS.items():
            section = dict(sources_cfg.get(kind.value) or {})
            section.setdefault("base_url", default_url)
            sources[kind] = _section(SourceSettings, section)

        return Settings(
            sources=sources,
            translation=_section(TranslationSettings, data.get("translation")),
            runtime=_section(RuntimeSettings, data.get("runtime")),
            subscriptions=_section(SubscriptionSettings, data.get("subscriptions")),
            discovery=_section(DiscoverySettings, data.get("discovery")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from None
