"""AWS resource provider."""

from .provider import AWSProvider

__all__ = ["AWSProvider"]
