"""
Metabolism Service: per-agent scheduling of the observe-fast / process-slow pipeline.

FAST PATH: `observe_turn` decides admission and writes a candidate inline.
SLOW PATH: `run_cycle` (on each external tick) extracts pending candidates for
every known agent under a process-wide lock, then fans results out to the
growth vector file and the knowledge gap bus.
"""

import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..models.core import BatchResult, Candidate, Message, TurnEvent
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import AppConfig, config as default_config
from ..utils.json_utils import read_json, write_json_atomic
from ..utils.logging_config import get_agent_logger, get_logger
from .candidate_store import CandidateStore
from .extraction import ExtractionService
from .gap_bus import KnowledgeGapBus
from .growth_vectors import GrowthVectorStore

logger = get_logger(__name__)

DEFAULT_AGENT_ID = 'main'
MAX_STORED_MESSAGES = 10
MAX_MESSAGE_CHARS = 2000
WORKSPACE_MARKER = 'workspace.json'

SignificanceSource = Callable[[str], Optional[float]]


class MetabolismServiceError(Exception):
    """Custom exception for metabolism service errors."""
    pass


def extract_text(message: Any) -> str:
    """Flatten a host message into plain text."""
    if not message:
        return ''
    content = message.get('content')
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict):
                parts.append(str(block.get('text') or block.get('content') or ''))
            elif isinstance(block, str):
                parts.append(block)
        return ' '.join(parts)
    return str(message.get('reasoning') or content or '')


def estimate_significance(message_count: int) -> float:
    """Conservative estimate used when no upstream significance signal exists."""
    if message_count > 10:
        return 0.5
    if message_count > 5:
        return 0.3
    return 0.1


def validate_agent_id(agent_id: Optional[str]) -> str:
    agent_id = agent_id or DEFAULT_AGENT_ID
    if agent_id in ('.', '..') or '/' in agent_id or '\\' in agent_id or os.sep in agent_id:
        raise MetabolismServiceError(f'Invalid agent id: {agent_id!r}')
    return agent_id


class AgentState:
    """Runtime context for one agent: its queue, extractor, cooldowns and lock."""

    def __init__(self, agent_id: str, data_dir: str, workspace_path: str, llm: BedrockLLM, config: AppConfig):
        self.agent_id = agent_id
        self.data_dir = data_dir
        self.workspace_path = workspace_path
        self.config = config
        self.log = get_agent_logger(logger, agent_id)

        self.store = CandidateStore(data_dir, config)
        self.extractor = ExtractionService(llm=llm, config=config)
        self.growth_vectors = GrowthVectorStore(self.growth_vectors_path)

        # Cooldown tracking by user id; not persisted across restarts
        self.last_admission_by_user: Dict[str, float] = {}

        self.lock = threading.Lock()
        self.last_active = time.time()

    @property
    def is_processing(self) -> bool:
        return self.lock.locked()

    @property
    def growth_vectors_path(self) -> str:
        if self.config.storage.growth_vectors_path:
            return self.config.storage.growth_vectors_path
        return os.path.join(self.workspace_path, 'memory', 'growth-vectors.json')

    def is_in_cooldown(self, user_id: str, now: Optional[float] = None) -> bool:
        last = self.last_admission_by_user.get(user_id)
        if last is None:
            return False
        now = time.time() if now is None else now
        return now - last < self.config.thresholds.cooldown_minutes * 60

    def mark_admitted(self, user_id: str, now: Optional[float] = None) -> None:
        self.last_admission_by_user[user_id] = time.time() if now is None else now


class AgentRegistry:
    """Lazily created agent states, keyed by agent id.

    States idle for longer than `agent_idle_hours` are evicted by `evict_idle`;
    a state that is mid-processing is never evicted.
    """

    def __init__(self, llm: BedrockLLM, config: AppConfig):
        self.llm = llm
        self.config = config
        self.base_data_dir = config.storage.data_dir
        self._states: Dict[str, AgentState] = {}
        self._lock = threading.Lock()

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def agent_ids(self) -> List[str]:
        return list(self._states)

    def data_dir_for(self, agent_id: str) -> str:
        # The default agent keeps the top-level layout
        if agent_id == DEFAULT_AGENT_ID:
            return self.base_data_dir
        return os.path.join(self.base_data_dir, 'agents', agent_id)

    def _resolve_workspace(self, data_dir: str, workspace: Optional[str]) -> str:
        """Return the agent's workspace, remembering an explicit one in its data dir."""
        marker = os.path.join(data_dir, WORKSPACE_MARKER)
        if workspace:
            try:
                os.makedirs(data_dir, exist_ok=True)
                write_json_atomic(marker, {'workspace': workspace})
            except OSError as e:
                logger.warning(f'Could not record workspace for {data_dir}: {e}')
            return workspace

        if os.path.exists(marker):
            try:
                recorded = read_json(marker).get('workspace')
                if recorded:
                    return recorded
            except (OSError, ValueError, AttributeError) as e:
                logger.warning(f'Ignoring unreadable workspace marker {marker}: {e}')
        return self.config.storage.workspace_dir

    def get(self, agent_id: Optional[str] = None, workspace: Optional[str] = None, touch: bool = True) -> AgentState:
        """Return the state for `agent_id`, creating it on first reference."""
        agent_id = validate_agent_id(agent_id)
        with self._lock:
            state = self._states.get(agent_id)
            if state is None:
                data_dir = self.data_dir_for(agent_id)
                state = AgentState(agent_id=agent_id,
                                   data_dir=data_dir,
                                   workspace_path=self._resolve_workspace(data_dir, workspace),
                                   llm=self.llm,
                                   config=self.config)
                self._states[agent_id] = state
                logger.info(f'Initialized metabolism state for agent "{agent_id}"')
            elif touch:
                state.last_active = time.time()
            return state

    def remove(self, agent_id: str) -> bool:
        """Deregister an agent. Refused while it is processing."""
        with self._lock:
            state = self._states.get(agent_id)
            if state is None or state.is_processing:
                return False
            del self._states[agent_id]
            return True

    def evict_idle(self, now: Optional[float] = None) -> List[str]:
        idle_hours = self.config.processing.agent_idle_hours
        if idle_hours <= 0:
            return []
        now = time.time() if now is None else now
        cutoff = now - idle_hours * 3600
        with self._lock:
            evicted = [
                agent_id for agent_id, state in self._states.items()
                if state.last_active < cutoff and not state.is_processing
            ]
            for agent_id in evicted:
                del self._states[agent_id]
        if evicted:
            logger.info(f'Evicted {len(evicted)} idle agent state(s): {", ".join(evicted)}')
        return evicted

    def discover(self) -> List[str]:
        """Agent ids with a queue on disk, default agent first."""
        agents_dir = os.path.join(self.base_data_dir, 'agents')
        agent_ids = []
        if os.path.isdir(os.path.join(self.base_data_dir, self.config.storage.candidates_dir)):
            agent_ids.append(DEFAULT_AGENT_ID)
        if os.path.isdir(agents_dir):
            with os.scandir(agents_dir) as entries:
                agent_ids.extend(sorted(e.name for e in entries if e.is_dir()))
        return agent_ids


class MetabolismService:
    """Scheduler for admission, batch extraction and fan-out across agents."""

    def __init__(self,
                 config: Optional[AppConfig] = None,
                 llm: Optional[BedrockLLM] = None,
                 gap_bus: Optional[KnowledgeGapBus] = None,
                 significance_source: Optional[SignificanceSource] = None):
        """Initialize the metabolism service.

        Args:
            config: AppConfig instance, uses default if None
            llm: LLM client shared by every agent's extractor
            gap_bus: Bus receiving knowledge gaps; a private one is created if None
            significance_source: Upstream per-agent significance signal
        """
        self.config = config or default_config
        self.llm = llm or BedrockLLM(self.config.bedrock_llm)
        self.gap_bus = gap_bus or KnowledgeGapBus()
        self.significance_source = significance_source
        self.registry = AgentRegistry(self.llm, self.config)

        # Serializes cycle-driven extraction across all agents
        self._global_lock = threading.Lock()

        if not self.config.enabled:
            logger.info('Metabolism disabled via config')
        logger.info('Initialized MetabolismService')

    @property
    def is_cycle_running(self) -> bool:
        return self._global_lock.locked()

    # ------------------ fast path ------------------

    def _significance(self, agent_id: str, message_count: int) -> float:
        if self.significance_source is not None:
            try:
                value = self.significance_source(agent_id)
                if value is not None:
                    return max(0.0, float(value))
            except Exception as e:
                logger.warning(f'[{agent_id}] Significance source failed, estimating instead: {e}')
        return estimate_significance(message_count)

    def observe_turn(self, event: TurnEvent, agent_id: Optional[str] = None) -> Optional[str]:
        """Queue a candidate if the turn is significant and its user is not cooling down.

        Returns:
            The candidate id if one was queued, else None

        Raises:
            OSError: If the candidate could not be written
        """
        if not self.config.enabled:
            return None

        # Internal ticks would feed the estimate fallback back into the queue
        if event.is_internal:
            logger.debug(f'[{agent_id or DEFAULT_AGENT_ID}] Skipping internally generated turn')
            return None

        state = self.registry.get(agent_id, event.workspace)
        messages = [m for m in event.messages or [] if isinstance(m, dict)]
        last_user = next((m for m in reversed(messages) if m.get('role') == 'user'), None)
        if last_user is None:
            return None

        thresholds = self.config.thresholds
        significance = self._significance(state.agent_id, len(messages))
        user_id = event.user_id or 'unknown'
        user_text = extract_text(last_user).lower()

        is_significant = significance >= thresholds.significance_minimum
        is_long_exchange = len(messages) >= thresholds.exchange_minimum
        has_explicit_marker = any(marker.lower() in user_text for marker in thresholds.explicit_markers)
        in_cooldown = state.is_in_cooldown(user_id)

        if not (is_significant or is_long_exchange or has_explicit_marker) or in_cooldown:
            state.log.debug(f'Skipping candidate (significance: {significance:.2f}, exchanges: {len(messages)}, '
                            f'explicit: {has_explicit_marker}, cooldown: {in_cooldown})')
            return None

        stored = [
            Message(role=str(m.get('role') or ''), content=extract_text(m)[:MAX_MESSAGE_CHARS])
            for m in messages[-MAX_STORED_MESSAGES:]
        ]
        candidate_id = state.store.enqueue(user_id=user_id,
                                           significance=significance,
                                           messages=stored,
                                           metadata={
                                               'exchange_count': len(messages),
                                               'session_id': event.session_id
                                           })
        state.mark_admitted(user_id)

        state.log.info(f'Queued candidate {candidate_id} (significance: {significance:.2f}, exchanges: {len(messages)})')
        return candidate_id

    # ------------------ slow path ------------------

    def _known_agents(self) -> List[str]:
        agent_ids = self.registry.discover()
        for agent_id in self.registry.agent_ids():
            if agent_id not in agent_ids:
                agent_ids.append(agent_id)
        return agent_ids

    def _run_batch(self, state: AgentState, candidates: Sequence[Candidate]) -> BatchResult:
        """Extract a batch and fan out its results. Caller holds the agent lock."""
        state.log.info(f'Processing {len(candidates)} candidate(s)')
        results = state.extractor.process_batch(candidates)

        if results.implications:
            state.log.info(f'Extracted {len(results.implications)} implications, '
                           f'{len(results.growth_vectors)} growth vectors, {len(results.gaps)} gaps')

            integration = self.config.integration
            if integration.write_growth_vectors and results.growth_vectors:
                if state.growth_vectors.append(results.growth_vectors):
                    state.log.info(f'Wrote {len(results.growth_vectors)} growth vector candidate(s)')

            if integration.emit_knowledge_gaps and results.gaps:
                state.log.info(f'Emitting {len(results.gaps)} gap(s) to {len(self.gap_bus)} listener(s)')
                self.gap_bus.publish(results.gaps, state.agent_id)

        # Only timeouts and connection failures stay pending for a later cycle
        retryable = set(results.retryable)
        for candidate in candidates:
            if candidate.id in retryable:
                continue
            outcome = {'implications': results.implication_count(candidate.id)}
            if candidate.id in results.errors:
                outcome['error'] = results.errors[candidate.id]
            state.store.mark_complete(candidate.id, outcome)

        return results

    def run_cycle(self) -> Dict[str, BatchResult]:
        """Process one batch per known agent. Skipped entirely if a cycle is running.

        Returns:
            Batch results keyed by agent id, for agents that had work
        """
        if not self.config.enabled:
            return {}

        if not self._global_lock.acquire(blocking=False):
            logger.debug('Skipping cycle - global processing in progress')
            return {}

        results: Dict[str, BatchResult] = {}
        try:
            self.registry.evict_idle()
            batch_size = self.config.processing.batch_size

            for agent_id in self._known_agents():
                try:
                    state = self.registry.get(agent_id, touch=False)
                    if state.is_processing:
                        continue

                    candidates = state.store.dequeue_peek(batch_size)
                    if not candidates:
                        continue

                    if not state.lock.acquire(blocking=False):
                        continue
                    try:
                        results[agent_id] = self._run_batch(state, candidates)
                    finally:
                        state.lock.release()

                except Exception as e:
                    logger.error(f'[{agent_id}] Processing error: {e}')
        finally:
            self._global_lock.release()

        return results

    def end_session(self, agent_id: Optional[str] = None) -> int:
        """Remove processed records older than the retention window."""
        state = self.registry.get(agent_id)
        removed = state.store.prune_retention(self.config.processing.retention_days)
        if removed > 0:
            state.log.info(f'Cleaned {removed} old processed file(s)')
        return removed

    # ------------------ query / command ------------------

    def get_state(self, agent_id: Optional[str] = None) -> Dict[str, Any]:
        state = self.registry.get(agent_id)
        stats = state.store.stats()
        return {
            'agent_id': state.agent_id,
            'pending': stats['pending'],
            'processed': stats['processed'],
            'is_processing': state.is_processing,
            'cooldowns': len(state.last_admission_by_user),
            'growth_vectors_path': state.growth_vectors_path,
        }

    def get_pending(self, agent_id: Optional[str] = None, limit: int = 10) -> Dict[str, Any]:
        """List pending candidates without their message text."""
        state = self.registry.get(agent_id)
        candidates = state.store.dequeue_peek(limit)
        return {
            'agent_id': state.agent_id,
            'candidates': [{
                'id': c.id,
                'timestamp': c.timestamp,
                'significance': c.significance,
                'message_count': len(c.messages),
            } for c in candidates],
        }

    def trigger(self, agent_id: Optional[str] = None, batch_size: Optional[int] = None) -> Dict[str, Any]:
        """Process one batch for an agent immediately, outside the cycle.

        Returns:
            Result payload; `success` is False if disabled or the agent is already processing
        """
        if not self.config.enabled:
            return {'success': False, 'error': 'Metabolism disabled'}

        state = self.registry.get(agent_id)

        if not state.lock.acquire(blocking=False):
            return {'success': False, 'error': 'Already processing'}

        try:
            candidates = state.store.dequeue_peek(batch_size or self.config.processing.batch_size)
            if not candidates:
                return {'success': True, 'message': 'No pending candidates', 'processed': 0}

            results = self._run_batch(state, candidates)
            return {
                'success': True,
                'processed': len(candidates) - len(results.retryable),
                'failed': len(results.failed),
                'implications': len(results.implications),
                'growth_vectors': len(results.growth_vectors),
                'gaps': len(results.gaps),
            }
        except Exception as e:
            state.log.error(f'Manual processing error: {e}')
            return {'success': False, 'error': str(e)}
        finally:
            state.lock.release()
