"""Healpack - self-healing build/deploy pipeline.

Wraps an opaque build command with three phases:

- Prophet: pre-build diagnostic scan with safe auto-fixes
- Surgeon: build-output analysis backed by a durable repair memory
- Guardian: one-shot post-deploy health probe
"""

__version__ = "0.3.0"
