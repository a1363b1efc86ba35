"""
sessionscribe - Recovery, transcription and delivery of per-speaker session audio.

Takes the per-speaker audio segments an upstream voice capturer leaves on disk
and turns them into an uploaded recording bundle through a four-stage
pipeline: segment scan → transcription → chronological merge → upload.
"""

__version__ = "0.1.0"
