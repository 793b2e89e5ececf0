"""Persist top-level calls (ask / task) to a lightweight JSON-lines log."""

import logging
from datetime import (
    datetime,
    timezone,
)
from pathlib import Path
from typing import List

from pydantic import ValidationError

from termagent.core.schema import HistoryLog

logger = logging.getLogger(__name__)

HISTORY_FILE = "query_log.jsonl"


class HistoryStore:
    """Append-only history of questions and tasks, one JSON object per line."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    @classmethod
    def in_data_dir(cls, data_dir: str | Path) -> "HistoryStore":
        return cls(Path(data_dir) / HISTORY_FILE)

    def log(self, method: str, query: str, answer: str) -> HistoryLog:
        """Append one record stamped with the current time."""
        record = HistoryLog(
            method=method,
            query=query,
            answer=answer,
            timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")
        logger.debug("Logged %s call to %s", method, self.path)
        return record

    def query(self, after: datetime | None = None, before: datetime | None = None) -> List[HistoryLog]:
        """
        Read the records back, oldest first.

        Parameters
        ----------
        after, before:
            Inclusive bounds on the record timestamp.  Naive datetimes are taken as UTC.

        Raises
        ------
        ValueError
            If a line of the log cannot be parsed.
        """
        if not self.path.exists():
            return []

        after, before = _aware(after), _aware(before)
        logs: List[HistoryLog] = []
        with self.path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    record = HistoryLog.model_validate_json(line)
                    stamp = _aware(datetime.fromisoformat(record.timestamp))
                except (ValidationError, ValueError) as exc:
                    raise ValueError(f"{self.path}:{lineno}: corrupt history record: {exc}") from exc

                if after is not None and stamp < after:
                    continue
                if before is not None and stamp > before:
                    continue
                logs.append(record)
        return logs


def _aware(moment: datetime | None) -> datetime | None:
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
