"""Artifact cache listing and cleanup.

The artifact cache never evicts on its own. This module is the operator's way
to inspect it and to clear stale entries (for example when the remote content
behind a URL changed).
"""

from pathlib import Path
from typing import List, Optional, Tuple

from .cache import ArtifactCache, PARTIAL_SUFFIX


def get_cache_info(cache_dir: Path) -> List[Tuple[Path, int]]:
    """Get info about items in a cache directory.

    Args:
        cache_dir: Path to cache directory.

    Returns:
        List of (path, size_bytes) tuples, including leftover partial
        downloads.
    """
    items = []
    if not cache_dir.exists():
        return items

    for item in cache_dir.iterdir():
        if item.is_file():
            items.append((item, item.stat().st_size))

    return sorted(items, key=lambda x: x[0].name)


def get_cache_info_totals(cache_dir: Path) -> Tuple[int, int]:
    """Get total count and size for a cache directory."""
    items = get_cache_info(cache_dir)
    return len(items), sum(size for _, size in items)


def format_size(size_bytes: float) -> str:
    """Format a size in bytes to human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


def clean_directory(cache_dir: Path, dry_run: bool = False) -> Tuple[int, int]:
    """Remove every file in a cache directory.

    Args:
        cache_dir: Path to cache directory.
        dry_run: If True, only report what would be deleted.

    Returns:
        Tuple of (items_removed, bytes_freed).
    """
    items = get_cache_info(cache_dir)
    total_items = len(items)
    total_bytes = sum(size for _, size in items)

    if dry_run:
        return total_items, total_bytes

    for item, _ in items:
        item.unlink(missing_ok=True)

    return total_items, total_bytes


def remove_entry(cache: ArtifactCache, url: str) -> bool:
    """Drop the cached artifact for one URL so the next run re-downloads it.

    Returns:
        True if an entry was removed.
    """
    path = cache.lookup(url)
    if path is None:
        return False
    path.unlink(missing_ok=True)
    return True


def list_cache_contents(cache_dir: Path, url: Optional[str] = None) -> None:
    """Print the contents of the artifact cache.

    Args:
        cache_dir: Artifact cache directory.
        url: Configured artifact URL; its entry is marked in the listing.
    """
    current = ArtifactCache(cache_dir).cached_path(url).name if url else None

    print("Cache Contents")
    print("=" * 60)
    print(f"\nArtifact Cache: {cache_dir}")
    if not cache_dir.exists():
        print("  (not created)")
        return

    items = get_cache_info(cache_dir)
    if not items:
        print("  (empty)")
        return

    total = 0
    for path, size in items:
        if path.name == current:
            note = " (configured url)"
        elif path.name.endswith(PARTIAL_SUFFIX):
            note = " (partial)"
        else:
            note = ""
        print(f"  {path.name[:16] + '...' + path.suffix:30} {format_size(size):>10}{note}")
        total += size
    print(f"  {'─' * 42}")
    print(f"  {'Total':30} {format_size(total):>10}")
