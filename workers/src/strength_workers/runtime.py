"""Process-level engine configuration, applied once at worker startup."""

import logging

from .config import Config, EngineSettings
from .reference_data import reference_cache

logger = logging.getLogger(__name__)

_engine_settings = EngineSettings()


def configure_engine(config: Config) -> EngineSettings:
    global _engine_settings
    _engine_settings = config.engine_settings()
    reference_cache.ttl_seconds = config.reference_ttl_seconds
    logger.info(
        "Engine configured (overall_scope=%s, reference_ttl=%.0fs)",
        _engine_settings.overall_scope,
        config.reference_ttl_seconds,
    )
    return _engine_settings


def get_engine_settings() -> EngineSettings:
    return _engine_settings
