"""
Catalog module for trackfetch.

Turns an album or playlist link into an ordered list of TrackDescriptors.

Usage:
    from trackfetch.catalog import CatalogClient, TrackResolver

    resolver = TrackResolver(CatalogClient.from_credentials(client_id, client_secret))
    collection = resolver.resolve("https://open.spotify.com/album/...")
"""

from trackfetch.catalog.client import CatalogClient
from trackfetch.catalog.models import LinkType, ResolvedCollection, TrackDescriptor
from trackfetch.catalog.resolver import TrackResolver, parse_link

__all__ = [
    "CatalogClient",
    "LinkType",
    "ResolvedCollection",
    "TrackDescriptor",
    "TrackResolver",
    "parse_link",
]
