from __future__ import annotations

from datetime import datetime, timezone
import logging
import platform
from typing import Iterator, List

logger = logging.getLogger(__name__)


class AuditTrail:
    """Timestamped provenance of how a cleaner's model was obtained."""

    def __init__(self, label: str = "cleaner") -> None:
        self.label = label
        self.entries: List[str] = []
        self.step(f"Session start ({label}) on {platform.platform()}")

    def step(self, message: str) -> None:
        self.entries.append(f"{datetime.now(timezone.utc).isoformat()} {message}")
        logger.debug("[%s] %s", self.label, message)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self.entries))

    def __len__(self) -> int:
        return len(self.entries)
