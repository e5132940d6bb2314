"""
Per-client usage telemetry.

Advisory counters keyed by client address. One tracker is created per
application lifespan and kept on ``app.state``; it never rejects requests.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Any

BYTES_PER_MB = 1024 * 1024


@dataclass
class ClientUsage:
    total_requests: int = 0
    total_bytes: int = 0
    uploads: int = 0
    last_access: datetime = field(default_factory=datetime.utcnow)


class UsageTracker:
    """Collects request and upload volume per client."""

    def __init__(self):
        self._clients: Dict[str, ClientUsage] = {}
        self._lock = threading.Lock()

    def record_request(self, client: str) -> ClientUsage:
        with self._lock:
            usage = self._clients.setdefault(client, ClientUsage())
            usage.total_requests += 1
            usage.last_access = datetime.utcnow()
            return usage

    def record_upload(self, client: str, size: int):
        with self._lock:
            usage = self._clients.setdefault(client, ClientUsage())
            usage.total_bytes += size
            usage.uploads += 1

    def get(self, client: str) -> ClientUsage:
        with self._lock:
            return self._clients.get(client, ClientUsage())

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {
                    "ip": client,
                    "totalRequests": usage.total_requests,
                    "totalBytes": usage.total_bytes,
                    "uploads": usage.uploads,
                    "lastAccess": usage.last_access.isoformat() + "Z",
                    "totalMB": f"{usage.total_bytes / BYTES_PER_MB:.2f}",
                }
                for client, usage in self._clients.items()
            ]
