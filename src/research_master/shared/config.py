"""
Resolved configuration for Research Master.

The dispatch core only *reads* these values; loading them from a file and
the environment lives here so every layer sees one immutable snapshot.

File format (TOML, or the same structure in YAML)::

    [api_keys]
    semantic_scholar = "your-api-key"
    core = "your-core-api-key"

    [rate_limits]
    default_requests_per_second = 5.0
    max_concurrent_requests = 10

    [sources]
    enabled_sources = "arxiv,semantic,crossref"
    disabled_sources = ""

    [[source_rates]]
    source = "semantic"
    requests_per_second = 0.5

    [cache]
    enabled = true
    directory = "~/.cache/research-master"
    search_ttl_seconds = 1800
    citation_ttl_seconds = 900
    max_size_mb = 500

    [proxy]
    http = "http://proxy:8080"
    https = "https://proxy:8080"
    no_proxy = "localhost,127.0.0.1"

Environment overrides (ignored when ``RESEARCH_MASTER_TEST_MODE=true``):
    RESEARCH_MASTER_ENABLED_SOURCES, RESEARCH_MASTER_DISABLED_SOURCES,
    RESEARCH_MASTER_RATE_LIMITS ("semantic:0.5,arxiv:5"),
    RESEARCH_MASTER_MAX_CONCURRENT, RESEARCH_MASTER_CACHE_ENABLED,
    RESEARCH_MASTER_CACHE_DIR, RESEARCH_MASTER_PROXY_HTTP,
    RESEARCH_MASTER_PROXY_HTTPS ("id:url,..." or a bare url),
    SEMANTIC_SCHOLAR_API_KEY, CORE_API_KEY
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError, ErrorContext

logger = logging.getLogger(__name__)

TEST_MODE_ENV_VAR = "RESEARCH_MASTER_TEST_MODE"

DEFAULT_CONFIG_FILES = ("research-master.toml", ".research-master.toml")


# =============================================================================
# Config sections
# =============================================================================

@dataclass(frozen=True)
class ApiKeys:
    """Opaque credentials handed to provider adapters."""
    semantic_scholar: str | None = None
    core: str | None = None


@dataclass(frozen=True)
class RateLimitConfig:
    """Pacing budgets. A per-source rate of ``0`` disables pacing for that source."""
    default_requests_per_second: float = 5.0
    max_concurrent_requests: int = 10
    acquire_timeout_seconds: float | None = 30.0
    per_source: Mapping[str, float] = field(default_factory=dict)
    burst: Mapping[str, float] = field(default_factory=dict)

    def rate_for(self, source_id: str) -> float:
        return self.per_source.get(source_id, self.default_requests_per_second)


@dataclass(frozen=True)
class SourceConfig:
    """Enabled / disabled provider id lists (``None`` means all enabled)."""
    enabled: tuple[str, ...] | None = None
    disabled: tuple[str, ...] = ()

    def is_enabled(self, source_id: str) -> bool:
        if source_id in self.disabled:
            return False
        return self.enabled is None or source_id in self.enabled


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool = False
    directory: Path | None = None
    search_ttl_seconds: float = 1800
    citation_ttl_seconds: float = 900
    max_size_mb: float = 500

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)


@dataclass(frozen=True)
class ProxyConfig:
    """Proxy settings, passed through to adapters untouched."""
    http: str | None = None
    https: str | None = None
    no_proxy: str | None = None
    per_source_http: Mapping[str, str] = field(default_factory=dict)
    per_source_https: Mapping[str, str] = field(default_factory=dict)

    def for_source(self, source_id: str) -> str | None:
        """Single proxy URL to use for ``source_id`` (https preferred)."""
        return (
            self.per_source_https.get(source_id)
            or self.per_source_http.get(source_id)
            or self.https
            or self.http
        )


@dataclass(frozen=True)
class Config:
    api_keys: ApiKeys = field(default_factory=ApiKeys)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    sources: SourceConfig = field(default_factory=SourceConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    request_timeout_seconds: float = 30.0
    search_deadline_seconds: float | None = None


# =============================================================================
# Parsing helpers
# =============================================================================

def parse_source_list(value: str | list[str] | tuple[str, ...] | None) -> tuple[str, ...] | None:
    """Parse ``"arxiv, semantic"`` (or a list) into ids; ``None``/empty gives ``None``."""
    if value is None:
        return None
    items = value.split(",") if isinstance(value, str) else value
    ids = tuple(item.strip() for item in items if item and item.strip())
    return ids or None


def parse_rate_limits(value: str | None) -> dict[str, float]:
    """
    Parse ``"semantic:0.5,arxiv:5"`` into ``{"semantic": 0.5, "arxiv": 5.0}``.

    Malformed pairs are skipped with a warning.
    """
    limits: dict[str, float] = {}
    if not value:
        return limits
    for part in value.split(","):
        source, sep, rate = part.partition(":")
        if not sep or not source.strip():
            if part.strip():
                logger.warning(f"Ignoring malformed rate limit entry: {part!r}")
            continue
        try:
            limits[source.strip()] = float(rate)
        except ValueError:
            logger.warning(f"Ignoring malformed rate limit entry: {part!r}")
    return limits


def parse_source_proxies(value: str | None) -> tuple[str | None, dict[str, str]]:
    """
    Parse a proxy override into ``(global_url, {source_id: url})``.

    A bare URL is the global proxy; ``"semantic:http://p:8080,arxiv:..."``
    assigns proxies per source.
    """
    if not value:
        return None, {}
    value = value.strip()
    scheme, sep, _ = value.partition("://")
    if sep and ":" not in scheme and "," not in scheme:
        return value, {}

    per_source: dict[str, str] = {}
    for part in value.split(","):
        source, sep, url = part.partition(":")
        if sep and source.strip() and url.strip():
            per_source[source.strip()] = url.strip()
    return None, per_source


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def is_test_mode(env: Mapping[str, str] | None = None) -> bool:
    env = os.environ if env is None else env
    return env.get(TEST_MODE_ENV_VAR, "").strip().lower() == "true"


# =============================================================================
# Loading
# =============================================================================

def read_config_file(path: str | Path) -> dict[str, Any]:
    """Read a TOML or YAML config file into a plain dict."""
    path = Path(path).expanduser()
    try:
        raw_text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read config file {path}: {e}",
            context=ErrorContext(input_value=str(path)),
        ) from e

    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(raw_text) or {}
        else:
            data = tomllib.loads(raw_text)
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Invalid config file {path}: {e}",
            context=ErrorContext(input_value=str(path)),
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def find_config_file(env: Mapping[str, str] | None = None) -> Path | None:
    """Look for a config file in the working directory, then XDG / home."""
    env = os.environ if env is None else env
    candidates = [Path(name) for name in DEFAULT_CONFIG_FILES]
    if xdg_home := env.get("XDG_CONFIG_HOME"):
        candidates.append(Path(xdg_home) / "research-master" / "config.toml")
    if home := env.get("HOME"):
        candidates.append(Path(home) / ".config" / "research-master" / "config.toml")
    return next((path for path in candidates if path.is_file()), None)


def config_from_dict(data: Mapping[str, Any]) -> Config:
    """Build a :class:`Config` from the file structure (see module docstring)."""
    api = data.get("api_keys") or {}
    rate = data.get("rate_limits") or {}
    srcs = data.get("sources") or {}
    cache = data.get("cache") or {}
    proxy = data.get("proxy") or {}

    per_source: dict[str, float] = {}
    burst: dict[str, float] = {}
    for entry in data.get("source_rates") or []:
        source = entry.get("source")
        if not source or "requests_per_second" not in entry:
            raise ConfigurationError(f"Invalid [[source_rates]] entry: {entry!r}")
        per_source[source] = float(entry["requests_per_second"])
        if "burst" in entry:
            burst[source] = float(entry["burst"])
    # [rate_limits] tables (and RESEARCH_MASTER_RATE_LIMITS) win over [[source_rates]]
    per_source.update({k: float(v) for k, v in (rate.get("per_source") or {}).items()})
    burst.update({k: float(v) for k, v in (rate.get("burst") or {}).items()})

    max_concurrent = int(rate.get("max_concurrent_requests", 10))
    if max_concurrent < 1:
        raise ConfigurationError(
            f"max_concurrent_requests must be >= 1, got {max_concurrent}"
        )

    directory = cache.get("directory")
    http_global, http_per_source = parse_source_proxies(proxy.get("http"))
    https_global, https_per_source = parse_source_proxies(proxy.get("https"))

    return Config(
        api_keys=ApiKeys(
            semantic_scholar=api.get("semantic_scholar") or None,
            core=api.get("core") or None,
        ),
        rate_limits=RateLimitConfig(
            default_requests_per_second=float(rate.get("default_requests_per_second", 5.0)),
            max_concurrent_requests=max_concurrent,
            acquire_timeout_seconds=rate.get("acquire_timeout_seconds", 30.0),
            per_source=per_source,
            burst=burst,
        ),
        sources=SourceConfig(
            enabled=parse_source_list(srcs.get("enabled_sources")),
            disabled=parse_source_list(srcs.get("disabled_sources")) or (),
        ),
        cache=CacheConfig(
            enabled=_as_bool(cache.get("enabled", False)),
            directory=Path(directory).expanduser() if directory else None,
            search_ttl_seconds=float(cache.get("search_ttl_seconds", 1800)),
            citation_ttl_seconds=float(cache.get("citation_ttl_seconds", 900)),
            max_size_mb=float(cache.get("max_size_mb", 500)),
        ),
        proxy=ProxyConfig(
            http=http_global,
            https=https_global,
            no_proxy=proxy.get("no_proxy") or None,
            per_source_http=http_per_source,
            per_source_https=https_per_source,
        ),
        request_timeout_seconds=float(data.get("request_timeout_seconds", 30.0)),
        search_deadline_seconds=data.get("search_deadline_seconds"),
    )


def apply_env_overrides(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    """Overlay ``RESEARCH_MASTER_*`` (and API key) variables onto the file structure."""
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in data.items()}

    def section(name: str) -> dict[str, Any]:
        return merged.setdefault(name, {})

    if value := env.get("RESEARCH_MASTER_ENABLED_SOURCES"):
        section("sources")["enabled_sources"] = value
    if value := env.get("RESEARCH_MASTER_DISABLED_SOURCES"):
        section("sources")["disabled_sources"] = value
    if value := env.get("RESEARCH_MASTER_RATE_LIMITS"):
        per_source = dict(section("rate_limits").get("per_source") or {})
        per_source.update(parse_rate_limits(value))
        section("rate_limits")["per_source"] = per_source
    if value := env.get("RESEARCH_MASTER_MAX_CONCURRENT"):
        section("rate_limits")["max_concurrent_requests"] = int(value)
    if "RESEARCH_MASTER_CACHE_ENABLED" in env:
        section("cache")["enabled"] = _as_bool(env["RESEARCH_MASTER_CACHE_ENABLED"] or "true")
    if value := env.get("RESEARCH_MASTER_CACHE_DIR"):
        section("cache")["directory"] = value
    if value := env.get("RESEARCH_MASTER_PROXY_HTTP"):
        section("proxy")["http"] = value
    if value := env.get("RESEARCH_MASTER_PROXY_HTTPS"):
        section("proxy")["https"] = value
    if value := env.get("SEMANTIC_SCHOLAR_API_KEY"):
        section("api_keys")["semantic_scholar"] = value
    if value := env.get("CORE_API_KEY"):
        section("api_keys")["core"] = value
    return merged


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Config:
    """
    Resolve the configuration.

    Args:
        path: Config file (TOML or YAML). When ``None`` the default
            locations are searched; no file at all means built-in defaults.
        env: Environment mapping (defaults to ``os.environ``).

    Returns:
        Immutable :class:`Config` snapshot
    """
    env = os.environ if env is None else env
    test_mode = is_test_mode(env)

    if path is None and not test_mode:
        path = find_config_file(env)

    data: dict[str, Any] = read_config_file(path) if path else {}
    if test_mode:
        logger.debug("Test mode: environment overrides ignored")
    else:
        data = apply_env_overrides(data, env)

    config = config_from_dict(data)
    logger.info(
        f"Configuration loaded (file={path or 'defaults'}, "
        f"cache={'on' if config.cache.enabled else 'off'}, "
        f"max_concurrent={config.rate_limits.max_concurrent_requests})"
    )
    return config
