"""
Application DI Container (dependency-injector).

Centralizes service creation and lifecycle management.

Usage::

    from research_master.container import ApplicationContainer

    container = ApplicationContainer()
    container.config.from_dict({"config_path": "~/.config/research-master/config.toml"})

    dispatcher = container.dispatcher()

    # In tests — override any provider:
    container.sources.override(providers.Object([mock_source]))
"""

from __future__ import annotations

import logging

from dependency_injector import containers, providers

from research_master.shared.config import Config, load_config

logger = logging.getLogger(__name__)


def _load_settings(config_path: str | None) -> Config:
    """Resolve file + environment configuration once per process."""
    return load_config(config_path or None)


def _create_sources(settings: Config) -> list[object]:
    """Lazy factory for the built-in adapters (avoids top-level httpx setup)."""
    from research_master.infrastructure.sources import build_sources

    return list(build_sources(settings))


def _create_registry(settings: Config, sources: list[object]) -> object:
    """Lazy factory for the frozen SourceRegistry."""
    from research_master.application.sources import SourceRegistry

    return SourceRegistry.from_sources(
        sources,  # type: ignore[arg-type]
        enabled=settings.sources.enabled,
        disabled=settings.sources.disabled,
    )


def _create_rate_limiter(settings: Config) -> object:
    """Lazy factory for RateLimiter."""
    from research_master.application.search.rate_limiter import RateLimiter

    return RateLimiter.from_config(settings.rate_limits)


def _create_cache(settings: Config) -> object | None:
    """Lazy factory for ResultCache; ``None`` when caching is disabled."""
    if not settings.cache.enabled:
        logger.info("Result cache disabled")
        return None
    from research_master.infrastructure.cache import ResultCache

    return ResultCache.from_config(settings.cache)


def _create_dispatcher(
    settings: Config,
    registry: object,
    rate_limiter: object,
    cache: object | None,
) -> object:
    """Lazy factory for SearchDispatcher."""
    from research_master.application.search.dispatcher import SearchDispatcher

    return SearchDispatcher(
        registry,  # type: ignore[arg-type]
        rate_limiter,  # type: ignore[arg-type]
        cache,  # type: ignore[arg-type]
        search_ttl=settings.cache.search_ttl_seconds,
        citation_ttl=settings.cache.citation_ttl_seconds,
        default_deadline=settings.search_deadline_seconds,
    )


class ApplicationContainer(containers.DeclarativeContainer):
    """Central DI container for Research Master.

    Manages creation and lifecycle of all core services:
    - ``settings``: resolved :class:`Config` (file + environment)
    - ``sources``: provider adapters, in registration order
    - ``registry``: frozen source registry
    - ``rate_limiter``: per-provider pacing and global concurrency
    - ``cache``: result cache (``None`` when disabled)
    - ``dispatcher``: the search dispatcher
    """

    config = providers.Configuration()

    settings = providers.Singleton(_load_settings, config_path=config.config_path)

    sources = providers.Singleton(_create_sources, settings=settings)

    registry = providers.Singleton(_create_registry, settings=settings, sources=sources)

    rate_limiter = providers.Singleton(_create_rate_limiter, settings=settings)

    cache = providers.Singleton(_create_cache, settings=settings)

    dispatcher = providers.Singleton(
        _create_dispatcher,
        settings=settings,
        registry=registry,
        rate_limiter=rate_limiter,
        cache=cache,
    )


__all__ = ["ApplicationContainer"]
