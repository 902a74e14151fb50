"""Configuration for cluster-healer."""

from .settings import Settings

__all__ = ["Settings"]
