"""Remote catalog API access."""

from catalog_sync.infrastructure.remote.client import RemoteCatalogClient

__all__ = ["RemoteCatalogClient"]
