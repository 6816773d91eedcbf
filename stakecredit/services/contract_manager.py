"""Installment contract lifecycle: creation, settlement bookkeeping, cancellation."""

from dataclasses import dataclass
from datetime import timedelta
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from stakecredit.common.protocol_constants import (
    CONTRACT_CAP_WINDOW_DAYS,
    add_days,
    apply_bps,
    checked_mul,
    ensure_u64,
    split_installments,
    total_due,
)
from stakecredit.core.clock import Clock
from stakecredit.core.config import ProtocolPolicy
from stakecredit.models.contracts import ContractModel, InstallmentStateModel, contract_key
from stakecredit.models.enums import ContractStatus, InstallmentStatus, PaymentOutcome, ScoreReason
from stakecredit.models.exceptions import (
    AlreadyCompleted,
    ContractNotActive,
    ContractNotFound,
    CreditError,
    InstallmentNotFound,
    InsufficientCollateral,
    InvalidAmount,
    InvalidInstallmentCount,
    InvalidInterval,
    ModelError,
    ScoreTooLow,
    TooManyContracts,
    Unauthorized,
    VersionConflictError,
)
from stakecredit.models.repositories import ContractRepository
from stakecredit.repositories.memory_store import DocumentStore

from .audit import record_event
from .collaborators import AccessPolicy, BenefitResolver, YieldSink, authorize_owner
from .collateral_ledger import CollateralLedger
from .credit_score_engine import CreditScoreEngine
from .custody import CustodyGateway, queue_transfer


logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SettlementCapability:
    """Token allowing its holder to record installment settlements."""

    holder: str
    token: str


def ensure_active(contract: ContractModel) -> None:
    """Raise the matching error when *contract* is no longer ACTIVE."""
    if contract.status == ContractStatus.COMPLETED:
        raise AlreadyCompleted("Contract already completed", contract_id=contract.contract_id)
    if contract.status != ContractStatus.ACTIVE:
        raise ContractNotActive(
            "Contract is {0}".format(contract.status.value),
            contract_id=contract.contract_id,
        )


class BNPLContractManager:
    """Opens installment contracts against collateral and tracks their progress."""

    def __init__(
        self,
        store: DocumentStore,
        contracts: ContractRepository,
        ledger: CollateralLedger,
        scores: CreditScoreEngine,
        custody: CustodyGateway,
        benefits: BenefitResolver,
        access_policy: AccessPolicy,
        yield_sink: YieldSink,
        clock: Clock,
        policy: ProtocolPolicy,
    ) -> None:
        self._store = store
        self._contracts = contracts
        self._ledger = ledger
        self._scores = scores
        self._custody = custody
        self._benefits = benefits
        self._access_policy = access_policy
        self._yield_sink = yield_sink
        self._clock = clock
        self._policy = policy
        self._settlement_capability: Optional[SettlementCapability] = None

    def grant_settlement_capability(self, holder: str) -> SettlementCapability:
        """Issue the single settlement capability.

        Raises:
            Unauthorized: If the capability was already issued.
        """
        if self._settlement_capability is not None:
            raise Unauthorized("Settlement capability already granted", holder=holder)
        self._settlement_capability = SettlementCapability(holder=holder, token=uuid4().hex)
        logger.info("Settlement capability granted holder=%s", holder)
        return self._settlement_capability

    def _check_capability(self, capability: SettlementCapability) -> None:
        if self._settlement_capability is None or capability is not self._settlement_capability:
            logger.warning("Settlement refused: invalid capability")
            raise Unauthorized("Caller does not hold the settlement capability")

    def _build_schedule(
        self,
        contract_total: int,
        installment_count: int,
        interval_days: int,
        created_at,
    ) -> List[InstallmentStateModel]:
        amounts = split_installments(contract_total, installment_count)
        installments = []
        for sequence_no, amount in enumerate(amounts, start=1):
            offset_days = checked_mul(sequence_no, interval_days)
            installments.append(
                InstallmentStateModel(
                    sequence_no=sequence_no,
                    due_at=add_days(created_at, offset_days),
                    amount_minor=amount,
                )
            )
        return installments

    def create_contract(
        self,
        owner: str,
        principal: int,
        installment_count: int,
        interval_days: int,
        merchant_id: str,
        signer: Optional[str],
        asset: Optional[str] = None,
    ) -> ContractModel:
        """Open an ACTIVE contract and pay the merchant in full.

        Args:
            owner: Borrower and collateral owner.
            principal: Purchase amount in minor units.
            installment_count: Number of installments.
            interval_days: Days between consecutive due dates.
            merchant_id: Merchant receiving the principal.
            signer: Caller identity, must equal ``owner``.
            asset: Collateral asset; the configured default when omitted.

        Returns:
            ContractModel: The persisted contract with its schedule.

        Raises:
            Unauthorized: If the signer is not an allow-listed owner.
            InvalidInstallmentCount: If the count is not offered to the owner.
            InvalidInterval: If the interval is outside the allowed range.
            InvalidAmount: If ``principal`` is zero.
            ScoreNotFound: If the owner has no score record.
            ScoreTooLow: If the score is below the tier minimum.
            TooManyContracts: If the yearly contract cap is reached.
            InsufficientCollateral: If the principal exceeds available credit.
            ArithmeticOverflow: If any amount leaves the u64 range.
        """
        asset = (asset or self._policy.default_asset).strip().upper()
        try:
            authorize_owner(self._access_policy, owner, signer)
            benefits = self._benefits.resolve_benefits(owner)
            if (
                installment_count not in self._policy.allowed_installment_counts
                or installment_count not in benefits.allowed_installments
            ):
                raise InvalidInstallmentCount(
                    "Installment count not offered",
                    installment_count=installment_count,
                    tier=benefits.tier,
                )
            if not self._policy.min_interval_days <= interval_days <= self._policy.max_interval_days:
                raise InvalidInterval("Interval out of range", interval_days=interval_days)
            ensure_u64(principal)
            if principal == 0:
                raise InvalidAmount("Principal must be > 0")

            with self._store.transaction() as txn:
                now = self._clock.now()
                score = self._scores.get_score(owner)
                if score.score < benefits.min_score:
                    raise ScoreTooLow("Score below tier minimum", score=score.score, minimum=benefits.min_score)

                window_start = now - timedelta(days=CONTRACT_CAP_WINDOW_DAYS)
                opened = self._contracts.count_created_since(owner, window_start)
                if opened >= self._policy.max_contracts_per_year:
                    raise TooManyContracts("Yearly contract limit reached", opened=opened)

                available = self._ledger.available_credit(owner, asset, benefits.limit_multiplier_bps)
                if principal > available:
                    raise InsufficientCollateral(
                        "Principal exceeds available credit",
                        principal=principal,
                        available=available,
                    )

                contract_total = total_due(principal, benefits.fee_rate_bps)
                installments = self._build_schedule(contract_total, installment_count, interval_days, now)
                ContractModel.validate_schedule(installments, expected_total_minor=contract_total)

                nonce = len(self._contracts.get_by_owner(owner))
                contract = ContractModel(
                    contract_id=contract_key(owner, nonce),
                    owner=owner,
                    merchant_id=merchant_id,
                    asset=asset,
                    nonce=nonce,
                    principal=principal,
                    benefit_tier=benefits.tier,
                    fee_rate_bps=benefits.fee_rate_bps,
                    limit_multiplier_bps=benefits.limit_multiplier_bps,
                    cashback_rate_bps=benefits.cashback_rate_bps,
                    penalty_rate_bps=benefits.penalty_rate_bps,
                    total_due=contract_total,
                    installment_count=installment_count,
                    installment_amount=installments[0].amount_minor,
                    final_installment_amount=installments[-1].amount_minor,
                    interval_days=interval_days,
                    installments=installments,
                    schedule_hash=ContractModel.schedule_digest(installments),
                    created_at=now,
                    updated_at=now,
                )
                contract = self._contracts.create(contract)
                self._scores.record_contract_opened(owner)

                contract_id = contract.contract_id
                queue_transfer(
                    txn,
                    self._custody,
                    "pay_merchant",
                    lambda: self._custody.pay_merchant(merchant_id, asset, principal, contract_id),
                )
                cashback = apply_bps(principal, benefits.cashback_rate_bps)
                if cashback > 0:
                    txn.add_effect(
                        "credit_cashback",
                        apply=lambda: self._yield_sink.credit_yield(owner, cashback, "cashback"),
                    )
                record_event(
                    self._store,
                    "CONTRACT_CREATED",
                    owner,
                    {
                        "contract_id": contract_id,
                        "merchant_id": merchant_id,
                        "principal": principal,
                        "total_due": contract_total,
                        "installment_count": installment_count,
                        "cashback": cashback,
                    },
                    now,
                )
            logger.info(
                "Contract created contract_id=%s owner=%s merchant_id=%s principal=%s total_due=%s installments=%s",
                contract.contract_id,
                owner,
                merchant_id,
                principal,
                contract.total_due,
                installment_count,
            )
            return contract
        except CreditError as exc:
            logger.warning("Contract creation rejected owner=%s code=%s", owner, exc.code)
            raise
        except ModelError:
            raise
        except Exception:
            logger.exception("Failed creating contract owner=%s merchant_id=%s", owner, merchant_id)
            raise

    def _load_pending(self, contract_id: str, sequence_no: int):
        contract = self.get_contract(contract_id)
        ensure_active(contract)
        installment = contract.installment(sequence_no)
        if installment is None:
            raise InstallmentNotFound("No such installment", contract_id=contract_id, sequence_no=sequence_no)
        if installment.status != InstallmentStatus.PENDING:
            raise VersionConflictError(
                "Installment {0} of {1} already settled".format(sequence_no, contract_id)
            )
        return contract, installment

    def record_payment(
        self,
        capability: SettlementCapability,
        contract_id: str,
        sequence_no: int,
        outcome: PaymentOutcome,
        recovered_minor: int = 0,
        penalty_minor: int = 0,
    ) -> ContractModel:
        """Mark one installment settled and complete the contract when it was the last.

        Raises:
            Unauthorized: If ``capability`` is not the manager-issued one.
            VersionConflictError: If the installment is no longer PENDING.
        """
        self._check_capability(capability)
        outcome = PaymentOutcome(outcome)
        with self._store.transaction():
            contract, installment = self._load_pending(contract_id, sequence_no)
            now = self._clock.now()
            installment.status = InstallmentStatus(outcome.value)
            installment.settled_at = now
            installment.recovered_minor = recovered_minor
            installment.penalty_minor = penalty_minor

            if outcome == PaymentOutcome.PAID:
                contract.paid_installments += 1
            else:
                contract.missed_installments += 1
            completed = contract.all_settled()
            if completed:
                contract.status = ContractStatus.COMPLETED
                contract.closed_at = now
            contract.updated_at = now
            contract = self._contracts.update(contract)

            if completed:
                self._scores.apply_reason(contract.owner, ScoreReason.COMPLETION)
            record_event(
                self._store,
                "INSTALLMENT_SETTLED",
                capability.holder,
                {"contract_id": contract_id, "sequence_no": sequence_no, "outcome": outcome.value},
                now,
            )
        logger.info(
            "Installment settled contract_id=%s sequence_no=%s outcome=%s paid=%s/%s status=%s",
            contract_id,
            sequence_no,
            outcome.value,
            contract.paid_installments,
            contract.installment_count,
            contract.status.value,
        )
        return contract

    def mark_defaulted(
        self,
        capability: SettlementCapability,
        contract_id: str,
        sequence_no: int,
        recovered_minor: int,
        penalty_minor: int,
    ) -> ContractModel:
        """Close the contract as DEFAULTED after an unsatisfied liquidation.

        Raises:
            Unauthorized: If ``capability`` is not the manager-issued one.
            VersionConflictError: If the installment is no longer PENDING.
        """
        self._check_capability(capability)
        with self._store.transaction():
            contract, installment = self._load_pending(contract_id, sequence_no)
            now = self._clock.now()
            installment.status = InstallmentStatus.DEFAULTED
            installment.settled_at = now
            installment.recovered_minor = recovered_minor
            installment.penalty_minor = penalty_minor

            contract.missed_installments += 1
            contract.status = ContractStatus.DEFAULTED
            contract.closed_at = now
            contract.updated_at = now
            contract = self._contracts.update(contract)
            record_event(
                self._store,
                "CONTRACT_DEFAULTED",
                capability.holder,
                {"contract_id": contract_id, "sequence_no": sequence_no, "recovered_minor": recovered_minor},
                now,
            )
        logger.warning(
            "Contract defaulted contract_id=%s sequence_no=%s recovered=%s",
            contract_id,
            sequence_no,
            recovered_minor,
        )
        return contract

    def cancel_contract(self, contract_id: str, signer: Optional[str]) -> ContractModel:
        """Cancel an ACTIVE contract that has no settled installment.

        Raises:
            ContractNotFound: If the contract does not exist.
            Unauthorized: If the signer is not the owner.
            ContractNotActive: If the contract is terminal or already has payments.
        """
        with self._store.transaction():
            contract = self.get_contract(contract_id)
            authorize_owner(self._access_policy, contract.owner, signer)
            ensure_active(contract)
            if contract.has_settlements():
                raise ContractNotActive("Contract already has payments", contract_id=contract_id)
            now = self._clock.now()
            contract.status = ContractStatus.CANCELLED
            contract.closed_at = now
            contract.updated_at = now
            contract = self._contracts.update(contract)
            record_event(self._store, "CONTRACT_CANCELLED", contract.owner, {"contract_id": contract_id}, now)
        logger.info("Contract cancelled contract_id=%s owner=%s", contract_id, contract.owner)
        return contract

    def get_contract(self, contract_id: str) -> ContractModel:
        """Return the contract.

        Raises:
            ContractNotFound: If the contract does not exist.
        """
        contract = self._contracts.find(contract_id)
        if contract is None:
            raise ContractNotFound("No such contract", contract_id=contract_id)
        return contract

    def describe_contract(self, contract: ContractModel) -> Dict[str, Any]:
        """Contract document with each installment's derived status, GRACE_WAITING included."""
        return contract.to_view(self._clock.now(), self._policy.grace_period_days)

    def list_contracts(self, owner: str) -> List[ContractModel]:
        """Return the owner's contracts, oldest first."""
        return self._contracts.get_by_owner(owner)

    def list_active(self) -> List[ContractModel]:
        return self._contracts.get_active()
