# core/utils.py
"""
Core Utility Functions.

Formatting and aggregation helpers used by the file list, the sidebar and the
storage dashboard. Everything here is pure; nothing touches the backend.
"""
import datetime
from typing import Dict, Iterable, List, Optional

from core.models import FileItem, StorageCategory, StorageStats

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]
RECENT_WINDOW = datetime.timedelta(days=7)

# Extension buckets shown on the dashboard
STORAGE_CATEGORIES = [
    ("Images", ["jpg", "jpeg", "png", "gif"]),
    ("Documents", ["pdf", "doc", "docx", "txt"]),
    ("Videos", ["mp4", "mov", "avi"]),
    ("Music", ["mp3", "wav", "ogg"]),
]


def format_file_size(num_bytes: int) -> str:
    """Human readable size, base 1024: 2621440 -> '2.5 MB'."""
    if num_bytes <= 0:
        return "0 Bytes"
    i = 0
    while num_bytes >= 1024 ** (i + 1) and i < len(SIZE_UNITS) - 1:
        i += 1
    value = round(num_bytes / (1024 ** i), 2)
    # Drop trailing zeros: 2.50 -> 2.5, 3.00 -> 3
    return f"{value:g} {SIZE_UNITS[i]}"


def format_date(value: datetime.datetime) -> str:
    return value.strftime("%b %d, %Y")


def filter_files(files: Iterable[FileItem], query: Optional[str]) -> List[FileItem]:
    """Case-insensitive name search over the in-memory list."""
    if not query or not query.strip():
        return list(files)
    needle = query.strip().lower()
    return [f for f in files if needle in f.name.lower()]


def _as_aware(value: datetime.datetime) -> datetime.datetime:
    return value if value.tzinfo else value.replace(tzinfo=datetime.timezone.utc)


def count_files(files: List[FileItem], now: Optional[datetime.datetime] = None) -> Dict[str, int]:
    """Sidebar badge counts."""
    now = _as_aware(now or datetime.datetime.now(datetime.timezone.utc))
    week_ago = now - RECENT_WINDOW
    return {
        "all": len(files),
        "starred": sum(1 for f in files if f.starred),
        "recent": sum(1 for f in files if _as_aware(f.modified) > week_ago),
    }


def compute_storage_stats(files: List[FileItem]) -> StorageStats:
    categories = [StorageCategory(label=label, extensions=exts) for label, exts in STORAGE_CATEGORIES]
    used = 0
    for f in files:
        used += f.size
        ext = f.name.rsplit(".", 1)[-1].lower() if "." in f.name else ""
        for category in categories:
            if ext in category.extensions:
                category.size += f.size
    return StorageStats(used=used, total_files=len(files), breakdown=categories)
