"""HARP Gradio client.

Drives remote, schema-less Gradio inference Spaces: resolves a human-typed
address, asks the Space for its control schema, and runs processing jobs
through the two-phase call/poll protocol.
"""
from __future__ import annotations

from harp.config import settings

__version__ = settings.app_version
