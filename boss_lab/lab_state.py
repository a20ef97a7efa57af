"""
Shared lab state read by the web panel: status line, latest telemetry and a
short ring of log messages.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

LOG_RING_SIZE = 25

log = logging.getLogger("boss_lab")


class LabState:
    def __init__(self, ring_size: int = LOG_RING_SIZE):
        self._lock = threading.RLock()
        self.ring_size = ring_size
        self.status = "INITIALIZING…"
        self.logs: List[str] = []
        self.telemetry: Optional[Dict[str, Any]] = None
        self.world: Optional[Dict[str, Any]] = None

    def add_log(self, msg: str) -> None:
        with self._lock:
            self.logs.insert(0, msg)
            if len(self.logs) > self.ring_size:
                self.logs.pop()
        log.info(msg)

    def set_status(self, status: str) -> None:
        with self._lock:
            self.status = status

    def update(self, telemetry: Optional[Dict[str, Any]] = None,
               world: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            if telemetry is not None:
                self.telemetry = telemetry
            if world is not None:
                self.world = world

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "status": self.status,
                "logs": list(self.logs),
                "telemetry": self.telemetry,
                "world": self.world,
            }
