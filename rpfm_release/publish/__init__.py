"""Release host publishing."""

from .publisher import ReleasePublisher

__all__ = ["ReleasePublisher"]
