"""Operator-curated facts that can be prepended to the system prompt."""

import logging
from datetime import (
    datetime,
    timezone,
)
from pathlib import Path
from typing import List

from pydantic import ValidationError

from termagent.core.schema import MemoryEntry

logger = logging.getLogger(__name__)

MEMORY_FILE = "memory.jsonl"


class MemoryStore:
    """Deduplicated list of short notes, one JSON object per line."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    @classmethod
    def in_data_dir(cls, data_dir: str | Path) -> "MemoryStore":
        return cls(Path(data_dir) / MEMORY_FILE)

    def add(self, content: str) -> bool:
        """Store *content* unless an identical entry exists.  Returns whether it was added."""
        content = content.strip()
        if not content:
            raise ValueError("Memory entry is empty")
        if any(entry.content == content for entry in self.list()):
            logger.debug("Memory entry already present: %s", content)
            return False

        entry = MemoryEntry(
            content=content, timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds")
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(entry.model_dump_json() + "\n")
        return True

    def list(self) -> List[MemoryEntry]:
        if not self.path.exists():
            return []

        entries: List[MemoryEntry] = []
        with self.path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(MemoryEntry.model_validate_json(line))
                except ValidationError as exc:
                    raise ValueError(f"{self.path}:{lineno}: corrupt memory entry: {exc}") from exc
        return entries

    def format_as_prompt(self) -> str:
        """Render the entries as a ``<memory>`` block, or ``""`` when there are none."""
        entries = self.list()
        if not entries:
            return ""
        return "<memory>\n" + "\n".join(entry.content for entry in entries) + "\n</memory>"
