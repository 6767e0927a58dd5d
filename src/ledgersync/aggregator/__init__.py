"""Client for the open-banking aggregator API."""

from .client import AggregatorClient
from .stream import PageStream

__all__ = ["AggregatorClient", "PageStream"]
