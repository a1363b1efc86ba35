"""
sessionscribe.merge - Chronological merge of per-speaker transcripts.

Stage 3: Project every speaker's segments onto session time, interleave them
into one ordered timeline and render it as JSON and Markdown.
"""

from __future__ import annotations
