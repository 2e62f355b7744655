"""Credential-badge connector - hackathon NFTs and POAPs."""

from klyro_pipeline.badges.connector import BadgeConnector
from klyro_pipeline.badges.models import Badge, BadgeBucket, BadgeCredentials
from klyro_pipeline.badges.sources import BadgeSourceError, PoapSource

__all__ = [
    "Badge",
    "BadgeBucket",
    "BadgeConnector",
    "BadgeCredentials",
    "BadgeSourceError",
    "PoapSource",
]
