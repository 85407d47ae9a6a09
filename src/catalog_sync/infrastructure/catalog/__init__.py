"""Local catalog store."""

from catalog_sync.infrastructure.catalog.media import MediaLibrary
from catalog_sync.infrastructure.catalog.store import CatalogStore, SqlCatalogStore

__all__ = ["CatalogStore", "MediaLibrary", "SqlCatalogStore"]
