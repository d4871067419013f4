"""External track-metadata importers."""

from cratecat.importer.base import APIConfig, BaseImporter, ExternalRecord
from cratecat.importer.ratelimit import RateLimitConfig, RateLimiter, SourceState
from cratecat.importer.spotify import SpotifyImporter

__all__ = [
    "APIConfig",
    "BaseImporter",
    "ExternalRecord",
    "RateLimitConfig",
    "RateLimiter",
    "SourceState",
    "SpotifyImporter",
]
