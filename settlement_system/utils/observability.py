"""Observability helpers (correlation ids for requests and settlement runs)."""
from __future__ import annotations
import os
import socket
import uuid
from typing import Mapping

REQUEST_ID_HEADER = "X-Request-ID"

def ensure_request_id(headers: Mapping[str, str]) -> str:
    return headers.get(REQUEST_ID_HEADER, None) or str(uuid.uuid4())

def new_run_id() -> str:
    return str(uuid.uuid4())

def instance_id() -> str:
    """Identify this process in lock rows / logs (host:pid)."""
    return f"{socket.gethostname()}:{os.getpid()}"

__all__ = ["ensure_request_id", "new_run_id", "instance_id", "REQUEST_ID_HEADER"]
