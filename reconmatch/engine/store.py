"""Suggestion stores used by the command line and by tests."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Sequence

from reconmatch.engine.models import Suggestion

logger = logging.getLogger(__name__)


class InMemorySuggestionStore:
    """Keep every batch in memory, keyed by phase."""

    def __init__(self):
        self.batches: List[tuple] = []

    def save_batch(self, phase: str, suggestions: Sequence[Suggestion]) -> None:
        self.batches.append((phase, list(suggestions)))

    @property
    def by_phase(self) -> Dict[str, List[Suggestion]]:
        grouped: Dict[str, List[Suggestion]] = {}
        for phase, batch in self.batches:
            grouped.setdefault(phase, []).extend(batch)
        return grouped

    @property
    def suggestions(self) -> List[Suggestion]:
        return [s for _, batch in self.batches for s in batch]


class JsonLinesSuggestionStore:
    """Append each suggestion as one JSON object per line."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("", encoding="utf-8")
        self.written = 0

    def save_batch(self, phase: str, suggestions: Sequence[Suggestion]) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            for suggestion in suggestions:
                f.write(json.dumps(suggestion.to_dict(), ensure_ascii=False) + "\n")
        self.written += len(suggestions)
        logger.info("Wrote %d %s suggestions to %s", len(suggestions), phase, self.path)
