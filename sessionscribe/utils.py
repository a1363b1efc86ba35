"""
sessionscribe.utils - Shared utility functions.

Contains common functions used across multiple modules to avoid duplication.
"""

from __future__ import annotations

import math
import re


def format_duration(seconds: float) -> str:
    """Format seconds as HH:MM:SS or MM:SS.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (HH:MM:SS if >= 1 hour, otherwise MM:SS)
    """
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_timestamp(offset_ms: float) -> str:
    """Format a session offset in milliseconds as MM:SS (HH:MM:SS past one hour)."""
    total_seconds = max(0, int(offset_ms // 1000))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    secs = total_seconds % 60
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_size(size: float) -> str:
    """Format a byte count in human-readable form."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def format_eta(seconds: float) -> str:
    """Rough ETA string: ~Ns below a minute, ~Nm above."""
    seconds = max(1, math.ceil(seconds))
    if seconds < 60:
        return f"~{seconds}s"
    return f"~{math.ceil(seconds / 60)}m"


def sanitize_name(name: str, max_length: int = 50) -> str:
    """Make a display name safe for use as a directory or file name."""
    cleaned = re.sub(r"[^a-zA-Z0-9_-]", "_", name)
    cleaned = re.sub(r"_+", "_", cleaned)
    return cleaned[:max_length] or "unknown"


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())
