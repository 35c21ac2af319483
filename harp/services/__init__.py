"""Network-facing services: the Gradio RPC client, sessions and status watching."""
from __future__ import annotations

from harp.services.gradio_client import GradioClient
from harp.services.session import JobResult, ModelSession
from harp.services.status_watcher import StatusWatcher

__all__ = ["GradioClient", "JobResult", "ModelSession", "StatusWatcher"]
