"""Messages exchanged between the host and the digest worker.

Both directions are fire-and-forget and FIFO through an ``asyncio.Queue``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True, slots=True)
class DigestRequest:
    file_path: str
    reset: bool = False
    digester: str | None = None
    type: str = "digest"


@dataclass(frozen=True, slots=True)
class FileChange:
    file_path: str
    is_new: bool = False
    content_changed: bool = False
    type: str = "file-change"


@dataclass(frozen=True, slots=True)
class Shutdown:
    type: str = "shutdown"


@dataclass(frozen=True, slots=True)
class Ready:
    type: str = "ready"


@dataclass(frozen=True, slots=True)
class DigestStarted:
    file_path: str
    type: str = "digest-started"


@dataclass(frozen=True, slots=True)
class DigestComplete:
    file_path: str
    success: bool
    type: str = "digest-complete"


@dataclass(frozen=True, slots=True)
class ShutdownComplete:
    type: str = "shutdown-complete"


InboundMessage = Union[DigestRequest, FileChange, Shutdown]
OutboundMessage = Union[Ready, DigestStarted, DigestComplete, ShutdownComplete]
