"""
Growth vector sink shared with the downstream validator.

The file is a JSON document holding validated `vectors` (owned by the
validator) and pending `candidates` (appended here). Updates are a whole-file
read-modify-write with no concurrency check, so only one process may write.
"""

import os
from typing import Any, Dict, Sequence

from ..models.core import GrowthVector
from ..utils.json_utils import read_json, write_json_atomic
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class GrowthVectorStore:
    """Append-only writer for growth vector candidates."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Dict[str, Any]:
        """Read the current document, starting fresh if it is missing or corrupt."""
        empty: Dict[str, Any] = {'vectors': [], 'candidates': []}
        if not os.path.exists(self.path):
            return empty
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            logger.warning(f'Growth vectors file {self.path} unreadable, starting fresh: {e}')
            return empty
        if not isinstance(data, dict):
            logger.warning(f'Growth vectors file {self.path} has unexpected shape, starting fresh')
            return empty
        return data

    def append(self, vectors: Sequence[GrowthVector]) -> bool:
        """Append vectors to the `candidates` list.

        Returns:
            True on success, False if the write failed (the failure is logged)
        """
        if not vectors:
            return True
        try:
            os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
            existing = self.load()
            candidates = existing.get('candidates')
            if not isinstance(candidates, list):
                candidates = []
            candidates.extend(v.to_dict() for v in vectors)
            existing['candidates'] = candidates
            write_json_atomic(self.path, existing)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f'Failed to write growth vectors to {self.path}: {e}')
            return False
