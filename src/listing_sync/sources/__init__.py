"""Source gateways."""

from listing_sync.sources.base import FetchError, SourceGateway, TransientFetchError
from listing_sync.sources.http import HttpSourceGateway
from listing_sync.sources.static import StaticSourceGateway

__all__ = [
    "FetchError",
    "HttpSourceGateway",
    "SourceGateway",
    "StaticSourceGateway",
    "TransientFetchError",
]
