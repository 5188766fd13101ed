"""
Extraction Service: turns queued candidates into implications, growth vectors and knowledge gaps.
"""

import uuid
from typing import List, Optional, Sequence

from ..models.core import (BatchResult, Candidate, ExtractionResult, GrowthVector, KnowledgeGap, Message,
                           ProcessedSummary)
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError, BedrockLLMUnavailableError
from ..utils.config import AppConfig, config as default_config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_ms, to_iso

logger = get_logger(__name__)

EXCERPT_MESSAGES = 10
MIN_EXCERPT_CHARS = 100
MAX_GAPS_PER_CANDIDATE = 2
GAP_MARKERS = ('unclear', 'figure out', 'explore')

# Keyword families, first match wins
VECTOR_TYPE_RULES = (
    ('user_correction', ('correct', 'wrong', 'error')),
    ('procedural', ('should', 'need to', 'remember to')),
    ('pattern_recognition', ('pattern', 'always', 'never')),
    ('preference_learning', ('prefer', 'better', 'worse')),
)

SYSTEM_PROMPT = """You are metabolizing a conversation you took part in. Extract what you learned.

Extract 1-5 implications. Each implication should:
- Be something learned, not a summary
- Be framed in your own voice, grounded and direct
- Connect to broader patterns where relevant
- Be specific enough to be actionable

Format: One implication per line. No headers, no numbering, no meta-text.
Just the implications, each on its own line.

Example implications:
- When the user mentions "lightweight", verify cost in both latency and complexity
- Corrections about system behavior should check runtime state before asserting
- People the user names often come back later; recognize them when they do"""


class ExtractionError(Exception):
    """Custom exception for extraction errors."""
    pass


def format_excerpt(messages: Sequence[Message]) -> str:
    """Render the last 10 messages as `ROLE: text` blocks."""
    if not messages:
        return ''
    return '\n\n'.join(f'{(m.role or "assistant").upper()}: {m.content}' for m in list(messages)[-EXCERPT_MESSAGES:])


def significance_note(significance: float) -> str:
    """Map a significance score onto one of three fixed context hints."""
    if significance > 0.7:
        return 'This was a high-significance exchange: there was tension, novelty, or correction.'
    if significance > 0.4:
        return 'This exchange had moderate energy: something worth noting.'
    return 'This was a routine exchange, but may still contain insights.'


def classify_vector_type(implication: str) -> str:
    """Classify an implication into one of the growth vector types."""
    lower = implication.lower()
    for vector_type, keywords in VECTOR_TYPE_RULES:
        if any(keyword in lower for keyword in keywords):
            return vector_type
    return 'insight'


def vector_weight(significance: float) -> float:
    return min(0.95, 0.7 + significance * 0.25)


class ExtractionService:
    """Extract implications from candidates using a Bedrock LLM, one request per candidate."""

    def __init__(self, llm: Optional[BedrockLLM] = None, config: Optional[AppConfig] = None):
        """Initialize the extraction service.

        Args:
            llm: Shared LLM client; a new BedrockLLM is created if None
            config: AppConfig instance, uses default if None
        """
        config = config or default_config
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.max_tokens = config.bedrock_llm.max_tokens
        self.temperature = config.bedrock_llm.temperature

        self.min_count = config.implications.minimum_count
        self.max_count = config.implications.maximum_count
        self.min_length = config.implications.minimum_length
        self.filter_patterns = [p.lower() for p in config.implications.filter_patterns]

        logger.debug('Initialized ExtractionService')

    def process_batch(self, candidates: Sequence[Candidate]) -> BatchResult:
        """Extract each candidate in order, isolating per-candidate failures.

        Only candidates that yielded at least one implication appear in
        `processed`; candidates whose extraction raised are listed in `failed`,
        and those that hit a timeout or connection failure also in `retryable`.
        """
        results = BatchResult()

        for candidate in candidates:
            try:
                extracted = self.process_one(candidate)
            except BedrockLLMUnavailableError as e:
                logger.warning(f'Bedrock unavailable for candidate {candidate.id}, will retry: {e}')
                results.failed.append(candidate.id)
                results.retryable.append(candidate.id)
                results.errors[candidate.id] = str(e)
                continue
            except Exception as e:
                logger.error(f'Error processing candidate {candidate.id}: {e}')
                results.failed.append(candidate.id)
                results.errors[candidate.id] = str(e)
                continue

            if extracted.implications:
                results.processed.append(
                    ProcessedSummary(id=candidate.id,
                                     timestamp=candidate.timestamp,
                                     significance=candidate.significance,
                                     implication_count=len(extracted.implications)))
                results.implications.extend(extracted.implications)
                results.growth_vectors.extend(extracted.growth_vectors)
                results.gaps.extend(extracted.gaps)

        return results

    def process_one(self, candidate: Candidate) -> ExtractionResult:
        """Extract a single candidate.

        Returns an empty result when the excerpt is too short to learn from.

        Raises:
            BedrockLLMError: If the generation call fails (BedrockLLMUnavailableError on timeout)
            ExtractionError: On any other unexpected failure
        """
        excerpt = format_excerpt(candidate.messages)
        if len(excerpt) < MIN_EXCERPT_CHARS:
            logger.debug(f'Candidate {candidate.id} excerpt too short ({len(excerpt)} chars)')
            return ExtractionResult()

        try:
            response = self._generate(excerpt, candidate.significance)
            implications = self.parse_implications(response)
            if len(implications) < self.min_count:
                logger.debug(f'Candidate {candidate.id} yielded {len(implications)} implication(s), '
                             f'below minimum {self.min_count}')
                return ExtractionResult()

            return ExtractionResult(implications=implications,
                                    growth_vectors=self.extract_growth_vectors(implications, candidate),
                                    gaps=self.extract_gaps(implications, candidate))

        except BedrockLLMError as e:
            logger.error(f'LLM error during extraction of {candidate.id}: {e}')
            raise
        except Exception as e:
            logger.error(f'Unexpected error during extraction of {candidate.id}: {e}')
            raise ExtractionError(f'Unexpected extraction error: {e}') from e

    def _generate(self, excerpt: str, significance: float) -> str:
        user_message = f"""The conversation:
{excerpt}

Context: {significance_note(significance)}"""

        llm_messages = [{'role': 'user', 'content': [{'text': user_message}]}]
        response, _ = self.llm.generate_response(messages=llm_messages,
                                                 system_prompt=SYSTEM_PROMPT,
                                                 max_tokens=self.max_tokens,
                                                 temperature=self.temperature)
        return response or ''

    def parse_implications(self, response: str) -> List[str]:
        """Filter raw LLM output down to implication lines, in original order."""
        if not response or not isinstance(response, str):
            return []

        implications = []
        for line in response.split('\n'):
            line = line.strip()
            if len(line) < self.min_length:
                continue
            lower = line.lower()
            # Headers and meta-text
            if any(lower.startswith(p) for p in self.filter_patterns):
                continue
            # Bracketed artifacts such as [METABOLISM]
            if line.startswith('['):
                continue
            implications.append(line)

        return implications[:self.max_count]

    def extract_growth_vectors(self, implications: List[str], candidate: Candidate) -> List[GrowthVector]:
        """Promote the top-ranked implication to a single growth vector."""
        if not implications:
            return []

        top_implication = implications[0]
        return [
            GrowthVector(id=f'gv_{now_ms()}_{uuid.uuid4().hex[:6]}',
                         text=top_implication,
                         type=classify_vector_type(top_implication),
                         source_id=candidate.id,
                         timestamp=to_iso(),
                         significance=candidate.significance,
                         weight=vector_weight(candidate.significance))
        ]

    def extract_gaps(self, implications: List[str], candidate: Candidate) -> List[KnowledgeGap]:
        """Collect up to two implications that read as open questions."""
        gaps = []
        for implication in implications:
            lower = implication.lower()
            if '?' in implication or any(marker in lower for marker in GAP_MARKERS):
                gaps.append(KnowledgeGap(question=implication, source_id=candidate.id, timestamp=to_iso()))
        return gaps[:MAX_GAPS_PER_CANDIDATE]
