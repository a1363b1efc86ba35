"""
sessionscribe.transcribe - Interchangeable speech-to-text engines.

Stage 2: Transcribe each segment through exactly one backend:
- Cloud Whisper API (via litellm)
- Local whisper.cpp model (via pywhispercpp)
- GPU whisper.cpp CLI (Vulkan/CUDA build)
"""

from __future__ import annotations
