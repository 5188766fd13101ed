"""
Candidate Store - durable file-per-record queue of pending metabolism candidates.

Each candidate is one JSON file in the pending directory. Completion moves the
file into the processed directory with a single rename, so a candidate is
always in exactly one partition. Writes are synchronous and never touch the
network; maintenance (pruning, archival, retention) is best effort per item.
"""

import os
import shutil
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from ..models.core import Candidate, Message
from ..utils.config import AppConfig, config as default_config
from ..utils.json_utils import read_json, write_json_atomic
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import is_older_than, now_ms, to_iso

logger = get_logger(__name__)

RECORD_SUFFIX = '.json'
MAX_MESSAGES = 10


class CandidateStoreError(Exception):
    """Custom exception for candidate store errors."""
    pass


def new_candidate_id() -> str:
    """Time-prefixed unique id; lexical order follows creation order."""
    return f'cand_{time.time_ns():020d}_{uuid.uuid4().hex[:9]}'


class CandidateStore:
    """Pending and processed candidate partitions under one data directory."""

    def __init__(self, data_dir: str, config: Optional[AppConfig] = None):
        """
        Initialize the store, creating both partitions if missing.

        Args:
            data_dir: Directory owning this queue (one per agent)
            config: AppConfig instance, uses default if None
        """
        config = config or default_config
        self.data_dir = data_dir
        self.candidates_dir = os.path.join(data_dir, config.storage.candidates_dir)
        self.processed_dir = os.path.join(data_dir, config.storage.processed_dir)
        self.max_pending = config.processing.max_pending_candidates

        os.makedirs(self.candidates_dir, exist_ok=True)
        os.makedirs(self.processed_dir, exist_ok=True)

    def _pending_path(self, candidate_id: str) -> str:
        return os.path.join(self.candidates_dir, f'{candidate_id}{RECORD_SUFFIX}')

    def _processed_path(self, candidate_id: str) -> str:
        return os.path.join(self.processed_dir, f'{candidate_id}{RECORD_SUFFIX}')

    @staticmethod
    def _list_records(directory: str) -> List[os.DirEntry]:
        with os.scandir(directory) as entries:
            return [e for e in entries if e.is_file() and e.name.endswith(RECORD_SUFFIX)]

    def enqueue(self,
                user_id: str,
                significance: float,
                messages: Sequence[Message],
                metadata: Optional[Dict[str, Any]] = None,
                timestamp: Optional[str] = None) -> str:
        """Persist a new candidate and prune the pending partition if over its ceiling.

        Args:
            user_id: Originating user
            significance: Priority score, only used for ordering
            messages: Stored messages; only the last 10 are kept
            metadata: Free-form metadata (exchange count, session id)
            timestamp: ISO creation time (defaults to now)

        Returns:
            The new candidate id

        Raises:
            CandidateStoreError: If the significance is not a number
            OSError: If the record cannot be written
        """
        try:
            significance = float(significance)
        except (TypeError, ValueError):
            raise CandidateStoreError(f'Invalid significance score: {significance!r}')

        candidate = Candidate(id=new_candidate_id(),
                              timestamp=timestamp or to_iso(),
                              user_id=user_id or 'unknown',
                              significance=significance,
                              messages=tuple(messages)[-MAX_MESSAGES:],
                              metadata=dict(metadata or {}),
                              written=now_ms())

        # Failures here are the caller's to see
        write_json_atomic(self._pending_path(candidate.id), candidate.to_dict())

        self._prune_if_needed()
        return candidate.id

    def dequeue_peek(self, limit: int = 3) -> List[Candidate]:
        """Return up to `limit` pending candidates, highest significance first.

        Non-destructive: nothing is removed or locked, so two callers may see
        the same candidates. Order among equal scores is unspecified.
        Unreadable records are skipped.
        """
        if limit <= 0:
            return []

        candidates = []
        for entry in self._list_records(self.candidates_dir):
            try:
                candidates.append(Candidate.from_dict(read_json(entry.path)))
            except FileNotFoundError:
                # Completed or pruned since the directory scan
                continue
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f'Skipping unreadable candidate record {entry.name}: {e}')

        candidates.sort(key=lambda c: c.significance, reverse=True)
        return candidates[:limit]

    def get(self, candidate_id: str) -> Optional[Candidate]:
        """Load a pending candidate by id, or None if it is not pending."""
        try:
            return Candidate.from_dict(read_json(self._pending_path(candidate_id)))
        except FileNotFoundError:
            return None

    def mark_complete(self, candidate_id: str, result: Optional[Dict[str, Any]] = None) -> bool:
        """Archive a pending candidate, attaching `result` when given.

        Idempotent: a candidate that is no longer pending is left alone.

        Returns:
            True if the candidate was moved to the processed partition
        """
        source_path = self._pending_path(candidate_id)
        dest_path = self._processed_path(candidate_id)

        if not os.path.exists(source_path):
            return False

        if result:
            try:
                data = read_json(source_path)
                data['processed'] = now_ms()
                data['result'] = dict(result)
                write_json_atomic(source_path, data)
            except FileNotFoundError:
                return False
            except (OSError, ValueError) as e:
                logger.warning(f'Could not annotate candidate {candidate_id} with its result: {e}')

        try:
            os.replace(source_path, dest_path)
            return True
        except FileNotFoundError:
            return False
        except OSError:
            # Cross-device move; fall back to copy then delete
            pass

        try:
            shutil.copy2(source_path, dest_path)
            os.unlink(source_path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f'Failed to archive candidate {candidate_id}: {e}')
            return False

    def discard(self, candidate_id: str) -> bool:
        """Remove a pending candidate without archiving it. Idempotent."""
        try:
            os.unlink(self._pending_path(candidate_id))
            return True
        except FileNotFoundError:
            return False

    def stats(self) -> Dict[str, int]:
        """Counts of records in each partition."""
        return {
            'pending': len(self._list_records(self.candidates_dir)),
            'processed': len(self._list_records(self.processed_dir)),
        }

    def _prune_if_needed(self) -> int:
        """Keep only the `max_pending` most recently written pending records.

        Eviction is by write recency, not significance.
        """
        entries = []
        for entry in self._list_records(self.candidates_dir):
            try:
                entries.append((entry.stat().st_mtime_ns, entry.name, entry.path))
            except OSError:
                continue

        if len(entries) <= self.max_pending:
            return 0

        # Newest first; names embed creation time and break mtime ties
        entries.sort(reverse=True)
        removed = 0
        for _, name, path in entries[self.max_pending:]:
            try:
                os.unlink(path)
                removed += 1
            except OSError as e:
                logger.debug(f'Could not prune candidate {name}: {e}')

        if removed:
            logger.info(f'Pruned {removed} pending candidate(s) over limit {self.max_pending}')
        return removed

    def prune_retention(self, max_age_days: float = 7) -> int:
        """Delete processed records older than `max_age_days`.

        Returns:
            Number of records removed
        """
        now = time.time()
        removed = 0
        for entry in self._list_records(self.processed_dir):
            try:
                if is_older_than(entry.stat().st_mtime, max_age_days, now=now):
                    os.unlink(entry.path)
                    removed += 1
            except OSError as e:
                logger.debug(f'Could not remove processed record {entry.name}: {e}')
        return removed
