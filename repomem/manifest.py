"""
Index file: a manifest of every category and file in the store.

The manifest is derived from the cache, never edited by hand. It is
persisted as ``index.json`` at the repository root so the repository
stays browsable on its own.
"""

import json
import logging
from dataclasses import dataclass, field

from .cache import MemoryCache
from .protocol import RemoteStoreProtocol
from .types import category_of, utc_now

logger = logging.getLogger(__name__)

INDEX_PATH = "index.json"


@dataclass
class ManifestEntry:
    path: str
    category: str


@dataclass
class Manifest:
    """Categories and files known to the store."""
    categories: list[str] = field(default_factory=list)
    files: list[ManifestEntry] = field(default_factory=list)
    last_updated: str = ""

    def to_dict(self) -> dict:
        return {
            "categories": list(self.categories),
            "files": [{"path": f.path, "category": f.category} for f in self.files],
            "lastUpdated": self.last_updated,
        }

    def to_json(self) -> str:
        """Canonical text form, as stored in index.json."""
        return json.dumps(self.to_dict(), indent=2)


def build_manifest(cache: MemoryCache) -> Manifest:
    """Derive the manifest from the cache, excluding the index itself."""
    files = sorted(
        (ManifestEntry(path, category_of(path)) for path in cache.keys() if path != INDEX_PATH),
        key=lambda f: f.path,
    )
    categories = sorted({f.category for f in files})
    return Manifest(categories=categories, files=files, last_updated=utc_now())


def parse_index(text: str) -> Manifest:
    """Parse index.json content.

    Raises:
        ValueError: If the content is not a manifest
    """
    try:
        data = json.loads(text)
        return Manifest(
            categories=[str(c) for c in data.get("categories", [])],
            files=[
                ManifestEntry(str(f["path"]), str(f.get("category") or category_of(f["path"])))
                for f in data.get("files", [])
            ],
            last_updated=str(data.get("lastUpdated", "")),
        )
    except (TypeError, KeyError, AttributeError) as e:
        raise ValueError(f"Malformed index: {e}") from e


def index_is_stale(cache: MemoryCache) -> bool:
    """
    True if the cached index.json does not list exactly the cached files.

    A missing index is stale only when there are files to list; an
    unreadable one always is.
    """
    expected = build_manifest(cache)
    record = cache.get(INDEX_PATH)
    if record is None:
        return bool(expected.files)
    try:
        stored = parse_index(record.content)
    except ValueError as e:
        logger.warning("Stored %s is unreadable: %s", INDEX_PATH, e)
        return True
    return stored.files != expected.files or stored.categories != expected.categories


async def update_index(remote: RemoteStoreProtocol, cache: MemoryCache) -> Manifest:
    """
    Regenerate index.json from the cache and push it.

    Uses the index's last known revision as the precondition and stores
    the new content and revision in the cache on success.

    Raises:
        RemoteStoreError: If the push fails (the caller decides whether
            that matters)
    """
    logger.info("Regenerating %s", INDEX_PATH)
    manifest = build_manifest(cache)
    content = manifest.to_json()

    existing = cache.get(INDEX_PATH)
    try:
        sha = await remote.put_file(INDEX_PATH, content, existing.revision if existing else None)
    except Exception as e:
        logger.warning("Failed to update index: %s", e)
        raise

    cache.set(INDEX_PATH, content, sha)
    logger.info(
        "Index updated with %d files in %d categories",
        len(manifest.files), len(manifest.categories),
    )
    return manifest
