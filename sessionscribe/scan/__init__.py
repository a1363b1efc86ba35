"""
sessionscribe.scan - Segment discovery and container conversion.

Stage 1: Walk a session directory, parse per-speaker segment file names,
group them per speaker and wrap raw PCM in WAV containers.
"""

from __future__ import annotations
