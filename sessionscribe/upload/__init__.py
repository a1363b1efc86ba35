"""
sessionscribe.upload - Delivery and crash recovery.

Stage 4: Upload the finished bundle with retry, and rebuild plus re-upload
segments a crashed capturer left on disk.
"""

from __future__ import annotations
