"""Named plan storage in a single JSON file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from plan import PlanItem, items_from_config

logger = logging.getLogger(__name__)


class PlanStore:
    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._plans: Dict[str, List[dict]] = {}
        if self.path is not None and self.path.exists():
            with open(self.path) as f:
                self._plans = json.load(f)

    def names(self) -> List[str]:
        return sorted(self._plans, key=str.casefold)

    def save(self, name: str, items: List[PlanItem]) -> None:
        name = (name or "").strip()
        if not name:
            raise ValueError("Enter a plan name first.")
        self._plans[name] = [item.to_dict() for item in items]
        self._flush()
        logger.info('Saved plan "%s" (%d items)', name, len(items))

    def load(self, name: str) -> List[PlanItem]:
        if name not in self._plans:
            raise KeyError(name)
        return items_from_config(self._plans[name])

    def delete(self, name: str) -> bool:
        if self._plans.pop(name, None) is None:
            return False
        self._flush()
        logger.info('Deleted plan "%s"', name)
        return True

    def _flush(self):
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self._plans, f, indent=4)
