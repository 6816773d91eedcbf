"""Bounded reputation score and repayment counters per owner."""

import logging
from typing import Any, Dict, Optional

from stakecredit.common.protocol_constants import clamp_score
from stakecredit.core.clock import Clock
from stakecredit.core.config import ProtocolPolicy
from stakecredit.models.credit_scores import REASON_COUNTERS, U32_MAX, CreditScoreModel
from stakecredit.models.enums import ScoreReason
from stakecredit.models.exceptions import AlreadyInitialized, ArithmeticOverflow, ScoreNotFound
from stakecredit.models.repositories import CreditScoreRepository
from stakecredit.repositories.memory_store import DocumentStore

from .audit import record_event
from .collaborators import AccessPolicy, authorize_owner


logger = logging.getLogger(__name__)


class CreditScoreEngine:
    """Creates score records and applies clamped adjustments."""

    def __init__(
        self,
        store: DocumentStore,
        scores: CreditScoreRepository,
        access_policy: AccessPolicy,
        clock: Clock,
        policy: ProtocolPolicy,
    ) -> None:
        self._store = store
        self._scores = scores
        self._access_policy = access_policy
        self._clock = clock
        self._policy = policy

    def delta_for(self, reason: ScoreReason) -> int:
        """Configured score change for *reason*."""
        return {
            ScoreReason.ON_TIME_PAYMENT: self._policy.score_on_time,
            ScoreReason.LATE_RECOVERED: self._policy.score_late_recovered,
            ScoreReason.COMPLETION: self._policy.score_completion,
            ScoreReason.DEFAULT: self._policy.score_default,
        }[reason]

    def initialize(self, owner: str, signer: Optional[str]) -> CreditScoreModel:
        """Create the owner's score record at the initial score.

        Raises:
            Unauthorized: If the signer is not an allow-listed owner.
            AlreadyInitialized: If the owner already has a record.
        """
        authorize_owner(self._access_policy, owner, signer)
        with self._store.transaction():
            if self._scores.find(owner) is not None:
                logger.warning("Score initialisation rejected owner=%s: already initialised", owner)
                raise AlreadyInitialized("Score record already exists", owner=owner)
            now = self._clock.now()
            record = self._scores.create(
                CreditScoreModel(
                    owner=owner,
                    score=self._policy.initial_score,
                    last_updated=now,
                    created_at=now,
                    updated_at=now,
                )
            )
            record_event(self._store, "SCORE_INITIALIZED", owner, {"score": record.score}, now)
        logger.info("Score initialised owner=%s score=%s", owner, record.score)
        return record

    def apply_delta(self, owner: str, delta: int, reason: ScoreReason) -> CreditScoreModel:
        """Add a signed delta, clamp, and bump the counter tied to *reason*.

        The score and its counter are written in the same document update.

        Raises:
            ScoreNotFound: If the owner has no record.
        """
        reason = ScoreReason(reason)
        with self._store.transaction():
            record = self._scores.find(owner)
            if record is None:
                raise ScoreNotFound("No score record", owner=owner)
            now = self._clock.now()
            previous = record.score
            counter = REASON_COUNTERS[reason]
            count = getattr(record, counter) + 1
            if count > U32_MAX:
                raise ArithmeticOverflow("{0} overflow".format(counter), owner=owner)

            record.score = clamp_score(previous + int(delta), self._policy.min_score, self._policy.max_score)
            setattr(record, counter, count)
            record.last_reason = reason
            record.last_updated = now
            record.updated_at = now
            record = self._scores.update(record)
            record_event(
                self._store,
                "SCORE_ADJUSTED",
                owner,
                {"reason": reason.value, "delta": int(delta), "before": previous, "after": record.score},
                now,
            )
        logger.info(
            "Score adjusted owner=%s reason=%s delta=%s before=%s after=%s",
            owner,
            reason.value,
            delta,
            previous,
            record.score,
        )
        return record

    def apply_reason(self, owner: str, reason: ScoreReason) -> CreditScoreModel:
        """Apply the configured delta for *reason*."""
        return self.apply_delta(owner, self.delta_for(reason), reason)

    def record_contract_opened(self, owner: str) -> CreditScoreModel:
        """Count a newly opened contract without touching the score."""
        with self._store.transaction():
            record = self._scores.find(owner)
            if record is None:
                raise ScoreNotFound("No score record", owner=owner)
            if record.total_contracts + 1 > U32_MAX:
                raise ArithmeticOverflow("total_contracts overflow", owner=owner)
            now = self._clock.now()
            record.total_contracts += 1
            record.updated_at = now
            return self._scores.update(record)

    def get_score(self, owner: str) -> CreditScoreModel:
        """Return the score record.

        Raises:
            ScoreNotFound: If the owner has no record.
        """
        record = self._scores.find(owner)
        if record is None:
            raise ScoreNotFound("No score record", owner=owner)
        return record

    def get_payment_stats(self, owner: str) -> Dict[str, Any]:
        """Repayment totals and on-time share for *owner*."""
        record = self.get_score(owner)
        return {
            "owner": owner,
            "score": record.score,
            "on_time_count": record.on_time_count,
            "late_count": record.late_count,
            "default_count": record.default_count,
            "completed_count": record.completed_count,
            "total_contracts": record.total_contracts,
            "total_payments": record.total_payments,
            "on_time_percentage": record.on_time_percentage(),
        }
