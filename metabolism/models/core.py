"""
Core data models for the metabolism pipeline.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Closed set of growth vector types
VECTOR_TYPES = ('user_correction', 'procedural', 'pattern_recognition', 'preference_learning', 'insight')


@dataclass(frozen=True)
class Message:
    """A single stored conversation message."""
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {'role': self.role, 'content': self.content}


@dataclass(frozen=True)
class Candidate:
    """A queued unit of raw conversational material awaiting extraction.

    Candidates are immutable once written. The significance score only orders
    extraction; it is never updated after the candidate is persisted.
    """
    id: str  # Sortable by creation order within a queue
    timestamp: str  # ISO-8601 creation time
    user_id: str
    significance: float
    messages: Tuple[Message, ...]  # At most 10
    metadata: Dict[str, Any] = field(default_factory=dict)
    written: int = 0  # Wall-clock ms at persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'user_id': self.user_id,
            'significance': self.significance,
            'messages': [m.to_dict() for m in self.messages],
            'metadata': dict(self.metadata),
            'written': self.written,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Candidate':
        messages = tuple(
            Message(role=str(m.get('role') or ''), content=str(m.get('content') or ''))
            for m in data.get('messages') or [] if isinstance(m, dict))
        return cls(id=data['id'],
                   timestamp=data.get('timestamp', ''),
                   user_id=data.get('user_id') or 'unknown',
                   significance=float(data.get('significance') or 0.0),
                   messages=messages,
                   metadata=dict(data.get('metadata') or {}),
                   written=int(data.get('written') or 0))


@dataclass
class GrowthVector:
    """A promoted implication flagged as a candidate behavioral trait.

    Always created with validation_status 'candidate'; validation happens
    downstream, never here.
    """
    id: str
    text: str
    type: str  # One of VECTOR_TYPES
    source_id: str
    timestamp: str
    significance: float
    weight: float  # In [0.7, 0.95] for significance in [0, 1]
    source: str = 'metabolism'
    validation_status: str = 'candidate'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the keys the growth-vector validator reads."""
        return {
            'id': self.id,
            'text': self.text,
            'type': self.type,
            'source': self.source,
            'sourceId': self.source_id,
            'timestamp': self.timestamp,
            'entropy': self.significance,
            'validation_status': self.validation_status,
            'weight': self.weight,
        }


@dataclass
class KnowledgeGap:
    """An unresolved question surfaced from extracted implications."""
    question: str
    source_id: str
    timestamp: str
    source: str = 'metabolism'


@dataclass
class ExtractionResult:
    """Output of extracting a single candidate."""
    implications: List[str] = field(default_factory=list)
    growth_vectors: List[GrowthVector] = field(default_factory=list)
    gaps: List[KnowledgeGap] = field(default_factory=list)


@dataclass
class ProcessedSummary:
    """Summary entry for a candidate that yielded at least one implication."""
    id: str
    timestamp: str
    significance: float
    implication_count: int


@dataclass
class BatchResult:
    """Aggregated output of a batch, in dequeue order."""
    processed: List[ProcessedSummary] = field(default_factory=list)
    implications: List[str] = field(default_factory=list)
    growth_vectors: List[GrowthVector] = field(default_factory=list)
    gaps: List[KnowledgeGap] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)  # Candidate IDs whose extraction raised
    retryable: List[str] = field(default_factory=list)  # Subset of failed that stays pending
    errors: Dict[str, str] = field(default_factory=dict)  # Failure message by candidate ID

    def implication_count(self, candidate_id: str) -> int:
        for summary in self.processed:
            if summary.id == candidate_id:
                return summary.implication_count
        return 0


@dataclass
class TurnEvent:
    """A completed conversational turn as delivered by the host runtime.

    Messages keep the host's shape: `content` may be a string or a list of
    content blocks.
    """
    messages: List[Dict[str, Any]]
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    workspace: Optional[str] = None
    is_internal: bool = False  # Turn driven by a scheduling tick, not a user
