"""Run metadata side-channel kept next to the thread history."""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path

from relay_agent.config import Settings
from relay_agent.types import RunMetadata

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class RunMetadataCache:
    """One JSON file per thread mapping message id to run metadata."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RunMetadataCache":
        return cls(settings.run_cache_dir)

    def path_for(self, thread_id: str) -> Path:
        return self.directory / f"run_metadata_{_UNSAFE.sub('_', thread_id)}.json"

    def load(self, thread_id: str) -> dict[str, RunMetadata]:
        path = self.path_for(thread_id)
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable run metadata cache %s: %s", path, exc)
            return {}
        entries: dict[str, RunMetadata] = {}
        for message_id, data in raw.items():
            try:
                entries[message_id] = RunMetadata.from_dict(data)
            except (KeyError, ValueError) as exc:
                logger.debug("Skipping bad run metadata for %s: %s", message_id, exc)
        return entries

    def save(self, thread_id: str, message_id: str, metadata: RunMetadata) -> None:
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            entries = {key: value.to_dict() for key, value in self.load(thread_id).items()}
            entries[message_id] = metadata.to_dict()
            self.path_for(thread_id).write_text(json.dumps(entries, indent=2), encoding="utf-8")
