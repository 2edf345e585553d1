"""
Global configuration for the ratelimitclient package.

Two sections are configurable: `http` (the requests transport) and
`rate_limit` (the RateLimitedHttpClient built by ConfigAwareHttpClient).

Precedence (highest to lowest):
1. Arguments passed to client constructors
2. Values set via RLC.configure()
3. Environment variables (RLC_*) - when allow_env_override=True
4. Dataclass defaults

Example:
    >>> from ratelimitclient import RLC
    >>> RLC.configure(rate_limit={"enabled": True, "limit": 20, "unit": 1.0})
    >>> RLC.config.rate_limit.limit
    20
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from typing import Any, Self

_UNLIMITED_VALUES = ("none", "null", "unlimited")


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an RLC_* environment variable cannot be parsed."""

    def __init__(self, env_var: str, value: str, expected_type: str):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")


class ConfigValidationError(ValueError):
    """Raised when a configuration value is out of range."""

    def __init__(self, section: str, field: str, value: Any, message: str):
        self.section = section
        self.field = field
        self.value = value
        super().__init__(f"[{section}] Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variable Parsers
# =============================================================================


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_wait_time(value: str) -> float | None:
    """Seconds as a float, or None for "none"/"null"/"unlimited"."""
    if value.strip().lower() in _UNLIMITED_VALUES:
        return None
    return float(value)


def _env(name: str, parse: Callable[[str], Any], nullable: bool = False) -> dict[str, Any]:
    """Field metadata binding a config field to its environment variable."""
    return {"env": name, "parse": parse, "nullable": nullable}


# =============================================================================
# Sections
# =============================================================================


@dataclass(frozen=True)
class _Section:
    """Immutable config section whose fields carry `_env()` metadata."""

    name = ""

    def with_overrides(self, overrides: dict[str, Any] | None) -> Self:
        """
        Return a copy with the given fields replaced.

        None leaves a field unchanged, except on nullable fields where it is
        a value of its own. Strings given for a nullable field go through the
        field's parser, so "unlimited" works the same here as in the env var.

        Raises:
            ValueError: If overrides name a field this section does not have.
        """
        if not overrides:
            return self

        by_name = {f.name: f for f in fields(self)}
        unknown = set(overrides) - set(by_name)
        if unknown:
            raise ValueError(
                f"Unknown {self.name} config fields: {sorted(unknown)}. "
                f"Valid fields are: {sorted(by_name)}"
            )

        changes: dict[str, Any] = {}
        for key, value in overrides.items():
            nullable = by_name[key].metadata["nullable"]
            if value is None and not nullable:
                continue
            if nullable and isinstance(value, str):
                value = by_name[key].metadata["parse"](value)
            changes[key] = value
        return replace(self, **changes) if changes else self

    def env_overrides(self) -> dict[str, Any]:
        """
        Parse the environment variables set for this section.

        Unset and empty variables are skipped.

        Raises:
            ConfigEnvVarError: If a variable cannot be parsed.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata["env"]
            raw_value = os.environ.get(env_var)
            if not raw_value:
                continue
            try:
                overrides[f.name] = f.metadata["parse"](raw_value)
            except ValueError as e:
                raise ConfigEnvVarError(env_var, raw_value, str(f.type)) from e
        return overrides

    def env_sources(self) -> dict[str, str]:
        """Map each field whose env var is set to its "env:VAR" source label."""
        return {
            f.name: f"env:{f.metadata['env']}"
            for f in fields(self)
            if os.environ.get(f.metadata["env"])
        }

    def with_env_vars(self) -> Self:
        return self.with_overrides(self.env_overrides())

    def validate(self) -> Self:
        return self

    def _invalid(self, field_name: str, message: str) -> ConfigValidationError:
        return ConfigValidationError(self.name, field_name, getattr(self, field_name), message)


@dataclass(frozen=True)
class HttpConfig(_Section):
    """
    Configuration for the requests transport (SessionHttpClient).

    Attributes:
        request_timeout: Request timeout in seconds.
            Env var: RLC_HTTP_REQUEST_TIMEOUT
        stream: Whether responses are returned before their body is
            downloaded. None (default) lets ConfigAwareHttpClient stream only
            when rate limiting is enabled, since the concurrency slot is
            released when the body is read or closed.
            Env var: RLC_HTTP_STREAM
    """

    name = "http"

    request_timeout: float = field(default=30.0, metadata=_env("RLC_HTTP_REQUEST_TIMEOUT", float))
    stream: bool | None = field(default=None, metadata=_env("RLC_HTTP_STREAM", _parse_bool))

    def validate(self) -> Self:
        if self.request_timeout <= 0:
            raise self._invalid("request_timeout", "Must be greater than 0.")
        return self


@dataclass(frozen=True)
class RateLimitConfig(_Section):
    """
    Configuration for client-side rate limiting.

    When enabled, ConfigAwareHttpClient wraps its transport in a
    RateLimitedHttpClient built from these values.

    Attributes:
        enabled: Env var RLC_RATE_LIMIT_ENABLED.
        limit: Requests per unit, and maximum requests in flight.
            Env var: RLC_RATE_LIMIT_LIMIT
        unit: Window in seconds, also the base delay between 429 retries.
            Env var: RLC_RATE_LIMIT_UNIT
        retries: Retries on HTTP 429 before the rejection is returned.
            Env var: RLC_RATE_LIMIT_RETRIES
        max_wait_time: Longest wait for a pacer token in seconds, None for
            no limit. Accepts "unlimited" in configure() and the env var.
            Env var: RLC_RATE_LIMIT_MAX_WAIT_TIME
    """

    name = "rate_limit"

    enabled: bool = field(default=False, metadata=_env("RLC_RATE_LIMIT_ENABLED", _parse_bool))
    limit: int = field(default=100, metadata=_env("RLC_RATE_LIMIT_LIMIT", int))
    unit: float = field(default=1.0, metadata=_env("RLC_RATE_LIMIT_UNIT", float))
    retries: int = field(default=5, metadata=_env("RLC_RATE_LIMIT_RETRIES", int))
    max_wait_time: float | None = field(
        default=None,
        metadata=_env("RLC_RATE_LIMIT_MAX_WAIT_TIME", _parse_wait_time, nullable=True),
    )

    def validate(self) -> Self:
        if self.limit <= 0:
            raise self._invalid("limit", "Must be greater than 0.")
        if self.unit <= 0:
            raise self._invalid("unit", "Must be greater than 0.")
        if self.retries < 0:
            raise self._invalid("retries", "Must be greater than or equal to 0.")
        if self.max_wait_time is not None and self.max_wait_time <= 0:
            raise self._invalid("max_wait_time", "Must be greater than 0 (or None for unlimited).")
        return self


# =============================================================================
# Aggregate Configuration
# =============================================================================


@dataclass(frozen=True)
class ConfigEntry:
    """One resolved field: its value and where it came from ("default", "env:VAR" or "user")."""

    name: str
    value: Any
    source: str


@dataclass(frozen=True)
class RLCConfig:
    """
    All configuration sections plus the source of every non-default value.

    `sources` maps section name to {field name: source label}. Fields
    missing from it still hold their default.
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    sources: dict[str, dict[str, str]] = field(default_factory=dict, repr=False, compare=False)

    def sections(self) -> tuple[_Section, ...]:
        return (self.http, self.rate_limit)

    def with_env_vars(self) -> RLCConfig:
        """Return a copy with RLC_* environment variables applied."""
        sources = self._copy_sources()
        for section in self.sections():
            if env_sources := section.env_sources():
                sources.setdefault(section.name, {}).update(env_sources)
        return RLCConfig(
            http=self.http.with_env_vars(),
            rate_limit=self.rate_limit.with_env_vars(),
            sources=sources,
        )

    def with_section_overrides(
        self,
        *,
        http: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
    ) -> RLCConfig:
        """Return a copy with user overrides merged into each section."""
        new_http = self.http.with_overrides(http)
        new_rate_limit = self.rate_limit.with_overrides(rate_limit)

        sources = self._copy_sources()
        for section_name, overrides in (("http", http), ("rate_limit", rate_limit)):
            for key in overrides or {}:
                sources.setdefault(section_name, {})[key] = "user"

        return RLCConfig(http=new_http, rate_limit=new_rate_limit, sources=sources)

    def explain_data(self) -> dict[str, list[ConfigEntry]]:
        """Every field of every section with its value and source."""
        return {
            section.name: [
                ConfigEntry(
                    name=f.name,
                    value=getattr(section, f.name),
                    source=self.sources.get(section.name, {}).get(f.name, "default"),
                )
                for f in fields(section)
            ]
            for section in self.sections()
        }

    def _copy_sources(self) -> dict[str, dict[str, str]]:
        return {name: dict(entries) for name, entries in self.sources.items() if entries}


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _RLC:
    """
    Holder of the process-wide configuration.

    Clients read `RLC.config` when they are built, so configure before
    creating them.
    """

    def __init__(self) -> None:
        self._config = RLCConfig().with_env_vars()

    @property
    def config(self) -> RLCConfig:
        return self._config

    def configure(
        self,
        *,
        http: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> RLCConfig:
        """
        Replace the configuration with defaults, env vars and the given overrides.

        Args:
            http: Overrides for HttpConfig fields.
            rate_limit: Overrides for RateLimitConfig fields.
            allow_env_override: Apply RLC_* env vars to fields not given here.

        Raises:
            ValueError: If an override names an unknown field.
            ConfigValidationError: If a resulting value is out of range.
        """
        base = RLCConfig()
        if allow_env_override:
            base = base.with_env_vars()
        self._config = base.with_section_overrides(http=http, rate_limit=rate_limit)
        return self.validate()

    def reset(self) -> RLCConfig:
        """Go back to defaults plus env vars."""
        self._config = RLCConfig().with_env_vars()
        return self.validate()

    def validate(self) -> RLCConfig:
        for section in self._config.sections():
            section.validate()
        return self._config

    def explain(self, output: Callable[[str], None] = print) -> None:
        """
        Write one line per field, with its value and source.

        Example:
            >>> RLC.explain()
            RLC configuration:
            [http]
              request_timeout = 30.0 (default)
              stream          = None (default)
            [rate_limit]
              enabled         = True (user)
            ...
        """
        data = self._config.explain_data()
        width = max(len(entry.name) for entries in data.values() for entry in entries)

        output("RLC configuration:")
        for section_name, entries in data.items():
            output(f"[{section_name}]")
            for entry in entries:
                output(f"  {entry.name:<{width}} = {entry.value!r} ({entry.source})")

    def __repr__(self) -> str:
        return f"RLC(config={self._config!r})"


RLC: _RLC = _RLC()
RLC.validate()
