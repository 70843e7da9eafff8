"""
Workout history and live sample storage.

History records are kept newest-first in memory and, when a directory is
configured, written one JSON file per workout (the same layout the service
uses for saved workouts). The sample archive keeps a rolling time window of
live samples so a finished set can capture its movement data.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, List, Optional, Union

from session import Sample, WorkoutRecord

logger = logging.getLogger(__name__)


class HistoryStore:
    """Append-only workout history, newest first."""

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        self.directory = Path(directory) if directory else None
        self._records: List[WorkoutRecord] = []
        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._load()

    def all_records(self) -> List[WorkoutRecord]:
        return list(self._records)

    def __len__(self):
        return len(self._records)

    def append(self, record: WorkoutRecord) -> WorkoutRecord:
        self._records.insert(0, record)
        if self.directory is not None:
            self._write(record)
        return record

    def _write(self, record: WorkoutRecord):
        stamp = datetime.fromtimestamp(record.history_key or 0).strftime("%Y%m%d_%H%M%S_%f")
        label = (record.set_name or record.mode or "workout").replace(" ", "_")
        filepath = self.directory / f"{label}_{stamp}.json"
        with open(filepath, "w") as f:
            json.dump(record.to_dict(), f, indent=4)
        logger.info("Workout saved to %s", filepath)

    def _load(self):
        records = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                with open(path) as f:
                    records.append(WorkoutRecord.from_dict(json.load(f)))
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable workout file %s: %s", path, e)
        records.sort(key=lambda r: r.history_key or 0, reverse=True)
        self._records = records
        logger.info("Loaded %d workouts from %s", len(records), self.directory)


class SampleArchive:
    """Rolling window of live samples, ordered by arrival."""

    def __init__(self, retention_seconds: float = 600.0, max_samples: int = 100_000):
        self.retention_seconds = retention_seconds
        self._samples: Deque[Sample] = deque(maxlen=max_samples)

    def add(self, sample: Sample):
        self._samples.append(sample)
        cutoff = sample.timestamp - self.retention_seconds
        while self._samples and self._samples[0].timestamp < cutoff:
            self._samples.popleft()

    async def on_sample(self, sample: Sample):
        self.add(sample)

    def samples_between(self, start: float, end: float) -> List[Sample]:
        """Samples with ``start <= timestamp <= end``."""
        return [s for s in self._samples if start <= s.timestamp <= end]

    def __len__(self):
        return len(self._samples)
