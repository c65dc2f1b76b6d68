"""Semantic blacklist filter.

A posting is blacklisted when its embedding is at least ``threshold``
cosine-similar to the embedding of any blacklist keyword. The check runs from
both sides: when a posting gets its embedding (against all keywords) and when a
keyword gets its embedding (against all visible postings), so the result does
not depend on which of the two was embedded first.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from jobmail.domain.models import Embedding, PostingRemovedEvent
from jobmail.embeddings.exceptions import EmbeddingError
from jobmail.embeddings.index import EmbeddingIndex
from jobmail.logging import get_logger
from jobmail.logging.context import log_context
from jobmail.persistence import KeywordRepository, PostingRepository, RecordNotFoundError, get_session

from .events import EventBus

logger = get_logger(__name__, component="filter")


@dataclass
class FilterOutcome:
    """Result of one filter check.

    Attributes:
        subject_id: Posting or keyword id that was checked
        skipped: True when the check could not run
        skip_reason: Why it was skipped (missing, already_blacklisted, no_embedding)
        compared: Pairs compared
        invalid_pairs: Pairs skipped because they could not be compared
        blacklisted_ids: Postings newly blacklisted by this check
        matched_keyword: Keyword that matched (posting-side checks)
        best_similarity: Highest similarity seen
    """

    subject_id: int
    skipped: bool = False
    skip_reason: Optional[str] = None
    compared: int = 0
    invalid_pairs: int = 0
    blacklisted_ids: List[int] = field(default_factory=list)
    matched_keyword: Optional[str] = None
    best_similarity: Optional[float] = None

    def _observe(self, similarity: float) -> None:
        if self.best_similarity is None or similarity > self.best_similarity:
            self.best_similarity = similarity


class SemanticFilter:
    """Compares postings and blacklist keywords by embedding similarity."""

    def __init__(
        self,
        index: EmbeddingIndex,
        events: EventBus,
        threshold: float = 0.6,
        session_factory=get_session,
    ):
        self.index = index
        self.events = events
        self.threshold = threshold
        self._session_factory = session_factory

    def _similarity(self, a: Embedding, b: Embedding, outcome: FilterOutcome, **ids) -> Optional[float]:
        try:
            similarity = self.index.similarity(a, b)
        except EmbeddingError as e:
            outcome.invalid_pairs += 1
            logger.warning(
                f"Skipping incomparable pair: {e}",
                extra={"event": "filter.pair.invalid", **ids},
            )
            return None
        outcome.compared += 1
        outcome._observe(similarity)
        return similarity

    def _blacklist(self, posting_id: int, keyword: str, outcome: FilterOutcome) -> None:
        """Flag the posting and announce it, unless another check got there first."""
        try:
            with self._session_factory() as session:
                changed = PostingRepository(session).set_blacklisted(posting_id, True, reason=keyword)
        except RecordNotFoundError:
            logger.debug(
                "Posting was deleted before it could be blacklisted",
                extra={"event": "filter.posting.vanished", "posting_id": posting_id},
            )
            return
        if not changed:
            return

        outcome.blacklisted_ids.append(posting_id)
        logger.info(
            f"Posting {posting_id} blacklisted by keyword '{keyword}'",
            extra={"event": "filter.posting.blacklisted", "posting_id": posting_id, "keyword": keyword},
        )
        self.events.publish(PostingRemovedEvent(id=posting_id, reason="blacklisted", keyword=keyword))

    def check_posting(self, posting_id: int) -> FilterOutcome:
        """Compare one posting with every embedded keyword, in keyword order.

        The first keyword at or above the threshold blacklists the posting.
        """
        outcome = FilterOutcome(subject_id=posting_id)
        with log_context(posting_id=posting_id):
            with self._session_factory() as session:
                posting = PostingRepository(session).get_by_id(posting_id)
                keywords = KeywordRepository(session).get_with_embedding(self.index.model)

            if posting is None:
                outcome.skipped, outcome.skip_reason = True, "missing"
                return outcome
            if posting.blacklisted:
                outcome.skipped, outcome.skip_reason = True, "already_blacklisted"
                return outcome
            if not self.index.is_current(posting.embedding):
                outcome.skipped, outcome.skip_reason = True, "no_embedding"
                logger.debug("Posting has no current embedding", extra={"event": "filter.posting.skipped"})
                return outcome

            for keyword in keywords:
                if keyword.embedding is None:
                    outcome.invalid_pairs += 1
                    continue
                similarity = self._similarity(
                    posting.embedding, keyword.embedding, outcome, posting_id=posting_id, keyword_id=keyword.id
                )
                if similarity is not None and similarity >= self.threshold:
                    outcome.matched_keyword = keyword.text
                    self._blacklist(posting_id, keyword.text, outcome)
                    break

            logger.debug(
                f"Posting checked against {outcome.compared} keywords",
                extra={
                    "event": "filter.posting.checked",
                    "compared": outcome.compared,
                    "blacklisted": bool(outcome.blacklisted_ids),
                },
            )
            return outcome

    def check_keyword(self, keyword_id: int) -> FilterOutcome:
        """Compare one keyword with every visible embedded posting."""
        outcome = FilterOutcome(subject_id=keyword_id)
        with log_context(keyword_id=keyword_id):
            with self._session_factory() as session:
                keyword = KeywordRepository(session).get_by_id(keyword_id)
                postings = PostingRepository(session).get_postings_with_embedding(
                    self.index.model, exclude_blacklisted=True
                )

            if keyword is None:
                outcome.skipped, outcome.skip_reason = True, "missing"
                return outcome
            if not self.index.is_current(keyword.embedding):
                outcome.skipped, outcome.skip_reason = True, "no_embedding"
                return outcome

            for posting in postings:
                if posting.embedding is None:
                    outcome.invalid_pairs += 1
                    continue
                similarity = self._similarity(
                    keyword.embedding, posting.embedding, outcome, posting_id=posting.id, keyword_id=keyword_id
                )
                if similarity is not None and similarity >= self.threshold:
                    self._blacklist(posting.id, keyword.text, outcome)

            logger.info(
                f"Keyword '{keyword.text}' blacklisted {len(outcome.blacklisted_ids)} postings",
                extra={
                    "event": "filter.keyword.checked",
                    "compared": outcome.compared,
                    "blacklisted": len(outcome.blacklisted_ids),
                },
            )
            return outcome

    def embed_keyword(self, keyword_id: int) -> FilterOutcome:
        """Compute a keyword's embedding if it has none for the current model, then check it."""
        with self._session_factory() as session:
            keyword = KeywordRepository(session).get_by_id(keyword_id)

        if keyword is None:
            return FilterOutcome(subject_id=keyword_id, skipped=True, skip_reason="missing")

        if not self.index.is_current(keyword.embedding):
            embedding = self.index.embed(keyword.text)
            with self._session_factory() as session:
                stored = KeywordRepository(session).set_embedding(keyword_id, embedding)
            if not stored:
                # Blacklist was replaced while the embedding was computed
                return FilterOutcome(subject_id=keyword_id, skipped=True, skip_reason="missing")

        return self.check_keyword(keyword_id)
