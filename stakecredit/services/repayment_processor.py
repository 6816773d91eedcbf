"""Scheduled repayment and automatic collateral liquidation.

Per installment::

    PENDING --pay (now <= due + grace)--------------------> PAID
    PENDING --due passed, grace open------------------------> GRACE_WAITING (derived)
    PENDING --check after grace, debit covers owed---------> LIQUIDATED
    PENDING --check after grace, debit short----------------> DEFAULTED (contract too)

``owed`` is the installment plus the contract's penalty rate applied to it.
"""

from datetime import datetime
import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from stakecredit.common.protocol_constants import checked_add, penalty_for
from stakecredit.core.clock import Clock
from stakecredit.core.config import ProtocolPolicy
from stakecredit.models.contracts import ContractModel
from stakecredit.models.enums import (
    ContractStatus,
    InstallmentStatus,
    LiquidationActionType,
    PaymentOutcome,
    ScoreReason,
)
from stakecredit.models.exceptions import (
    ContractNotActive,
    CreditError,
    GracePeriodNotExpired,
    InstallmentNotFound,
    InstallmentOverdue,
    ModelError,
)
from stakecredit.models.liquidation_logs import LiquidationLogModel
from stakecredit.models.repositories import LiquidationLogRepository
from stakecredit.repositories.memory_store import DocumentStore

from .audit import new_id
from .collaborators import AccessPolicy, authorize_owner
from .collateral_ledger import CollateralLedger
from .contract_manager import BNPLContractManager, ensure_active
from .credit_score_engine import CreditScoreEngine
from .custody import CustodyGateway, queue_transfer


logger = logging.getLogger(__name__)

PROCESSOR_HOLDER = "repayment-processor"


class RepaymentReport(BaseModel):
    """Outcome of one repayment or liquidation check."""

    contract_id: str
    sequence_no: Optional[int] = None
    action: str = Field(..., description="PAID, LIQUIDATED, DEFAULTED or NOOP.")
    installment_status: Optional[InstallmentStatus] = None
    contract_status: ContractStatus
    amount_minor: int = 0
    penalty_minor: int = 0
    needed_minor: int = 0
    seized_minor: int = 0
    log_id: Optional[str] = None


class OverdueInstallment(BaseModel):
    """Installment whose grace window has fully elapsed."""

    contract_id: str
    owner: str
    sequence_no: int
    due_at: datetime
    amount_minor: int


class RepaymentProcessor:
    """Collects owner payments and liquidates collateral for missed installments."""

    def __init__(
        self,
        store: DocumentStore,
        manager: BNPLContractManager,
        ledger: CollateralLedger,
        scores: CreditScoreEngine,
        logs: LiquidationLogRepository,
        custody: CustodyGateway,
        access_policy: AccessPolicy,
        clock: Clock,
        policy: ProtocolPolicy,
    ) -> None:
        self._store = store
        self._manager = manager
        self._ledger = ledger
        self._scores = scores
        self._logs = logs
        self._custody = custody
        self._access_policy = access_policy
        self._clock = clock
        self._policy = policy
        self._liquidation_capability = ledger.grant_liquidation_capability(PROCESSOR_HOLDER)
        self._settlement_capability = manager.grant_settlement_capability(PROCESSOR_HOLDER)

    @property
    def grace_period_days(self) -> int:
        return self._policy.grace_period_days

    def pay_installment(self, contract_id: str, signer: Optional[str]) -> RepaymentReport:
        """Pay the earliest unsettled installment.

        Early, on-time and in-grace payments all count as on time.

        Raises:
            ContractNotFound: If the contract does not exist.
            Unauthorized: If the signer is not the owner.
            AlreadyCompleted: If the contract is COMPLETED.
            ContractNotActive: If the contract is DEFAULTED or CANCELLED.
            InstallmentOverdue: If the grace window of the installment has passed.
        """
        try:
            with self._store.transaction() as txn:
                contract = self._manager.get_contract(contract_id)
                authorize_owner(self._access_policy, contract.owner, signer)
                ensure_active(contract)
                installment = contract.next_unsettled()
                if installment is None:
                    raise ContractNotActive("No unsettled installment", contract_id=contract_id)
                now = self._clock.now()
                if installment.is_past_grace(now, self.grace_period_days):
                    raise InstallmentOverdue(
                        "Grace window has passed",
                        contract_id=contract_id,
                        sequence_no=installment.sequence_no,
                    )

                sequence_no = installment.sequence_no
                amount = installment.amount_minor
                reference = "{0}#{1}".format(contract_id, sequence_no)
                queue_transfer(
                    txn,
                    self._custody,
                    "collect_installment",
                    lambda: self._custody.collect_installment(contract.owner, contract.asset, amount, reference),
                )
                updated = self._manager.record_payment(
                    self._settlement_capability,
                    contract_id,
                    sequence_no,
                    PaymentOutcome.PAID,
                )
                self._scores.apply_reason(contract.owner, ScoreReason.ON_TIME_PAYMENT)
            logger.info(
                "Installment paid contract_id=%s sequence_no=%s amount=%s",
                contract_id,
                sequence_no,
                amount,
            )
            return RepaymentReport(
                contract_id=contract_id,
                sequence_no=sequence_no,
                action="PAID",
                installment_status=InstallmentStatus.PAID,
                contract_status=updated.status,
                amount_minor=amount,
            )
        except CreditError as exc:
            logger.warning("Payment rejected contract_id=%s code=%s", contract_id, exc.code)
            raise
        except ModelError:
            raise
        except Exception:
            logger.exception("Failed installment payment contract_id=%s", contract_id)
            raise

    def check_repayment(
        self,
        contract_id: str,
        sequence_no: Optional[int] = None,
        triggered_by: str = "keeper",
    ) -> RepaymentReport:
        """Liquidate collateral for an installment whose grace window has passed.

        Anyone may call this. Settled installments and non-active contracts
        produce a NOOP report.

        Raises:
            ContractNotFound: If the contract does not exist.
            InstallmentNotFound: If ``sequence_no`` is not on the schedule.
            GracePeriodNotExpired: If the grace window is still open.
        """
        try:
            with self._store.transaction():
                contract = self._manager.get_contract(contract_id)
                if sequence_no is None:
                    installment = contract.next_unsettled()
                else:
                    installment = contract.installment(sequence_no)
                    if installment is None:
                        raise InstallmentNotFound(
                            "No such installment",
                            contract_id=contract_id,
                            sequence_no=sequence_no,
                        )
                if installment is None or installment.is_settled or contract.status != ContractStatus.ACTIVE:
                    return self._noop(contract, installment.sequence_no if installment else None)

                now = self._clock.now()
                if not installment.is_past_grace(now, self.grace_period_days):
                    raise GracePeriodNotExpired(
                        "Grace window still open",
                        contract_id=contract_id,
                        sequence_no=installment.sequence_no,
                        installment_status=installment.effective_status(now, self.grace_period_days).value,
                        grace_deadline=installment.grace_deadline(self.grace_period_days).isoformat(),
                    )
                return self._liquidate(contract, installment.sequence_no, installment.amount_minor, triggered_by, now)
        except CreditError as exc:
            logger.warning("Repayment check rejected contract_id=%s code=%s", contract_id, exc.code)
            raise
        except ModelError:
            raise
        except Exception:
            logger.exception("Failed repayment check contract_id=%s", contract_id)
            raise

    def _noop(self, contract: ContractModel, sequence_no: Optional[int]) -> RepaymentReport:
        installment = contract.installment(sequence_no) if sequence_no is not None else None
        logger.debug("Repayment check no-op contract_id=%s sequence_no=%s", contract.contract_id, sequence_no)
        return RepaymentReport(
            contract_id=contract.contract_id,
            sequence_no=sequence_no,
            action="NOOP",
            installment_status=installment.status if installment is not None else None,
            contract_status=contract.status,
        )

    def _liquidate(
        self,
        contract: ContractModel,
        sequence_no: int,
        amount: int,
        triggered_by: str,
        now: datetime,
    ) -> RepaymentReport:
        penalty = penalty_for(amount, contract.penalty_rate_bps)
        owed = checked_add(amount, penalty)
        seized = self._ledger.liquidation_debit(
            self._liquidation_capability,
            contract.owner,
            contract.asset,
            owed,
        )

        if seized == owed:
            outcome = LiquidationActionType.FULL_RECOVERY
            updated = self._manager.record_payment(
                self._settlement_capability,
                contract.contract_id,
                sequence_no,
                PaymentOutcome.LIQUIDATED,
                recovered_minor=seized,
                penalty_minor=penalty,
            )
            self._scores.apply_reason(contract.owner, ScoreReason.LATE_RECOVERED)
            installment_status = InstallmentStatus.LIQUIDATED
        else:
            outcome = LiquidationActionType.PARTIAL_RECOVERY
            updated = self._manager.mark_defaulted(
                self._settlement_capability,
                contract.contract_id,
                sequence_no,
                recovered_minor=seized,
                penalty_minor=penalty,
            )
            self._scores.apply_reason(contract.owner, ScoreReason.DEFAULT)
            installment_status = InstallmentStatus.DEFAULTED

        log = self._logs.create(
            LiquidationLogModel(
                log_id=new_id("liq"),
                contract_id=contract.contract_id,
                owner=contract.owner,
                asset=contract.asset,
                sequence_no=sequence_no,
                triggered_at=now,
                triggered_by=triggered_by or "anonymous",
                installment_minor=amount,
                penalty_minor=penalty,
                needed_minor=owed,
                seized_minor=seized,
                outcome=outcome,
                created_at=now,
                updated_at=now,
            )
        )
        log_fn = logger.info if outcome == LiquidationActionType.FULL_RECOVERY else logger.warning
        log_fn(
            "Liquidation executed contract_id=%s sequence_no=%s outcome=%s needed=%s seized=%s",
            contract.contract_id,
            sequence_no,
            outcome.value,
            owed,
            seized,
        )
        return RepaymentReport(
            contract_id=contract.contract_id,
            sequence_no=sequence_no,
            action=installment_status.value,
            installment_status=installment_status,
            contract_status=updated.status,
            amount_minor=amount,
            penalty_minor=penalty,
            needed_minor=owed,
            seized_minor=seized,
            log_id=log.log_id,
        )

    def list_overdue(self, now: Optional[datetime] = None) -> List[OverdueInstallment]:
        """Pending installments of ACTIVE contracts whose grace window has passed."""
        moment = now or self._clock.now()
        overdue: List[OverdueInstallment] = []
        for contract in self._manager.list_active():
            for installment in sorted(contract.installments, key=lambda item: item.sequence_no):
                if installment.is_settled or not installment.is_past_grace(moment, self.grace_period_days):
                    continue
                overdue.append(
                    OverdueInstallment(
                        contract_id=contract.contract_id,
                        owner=contract.owner,
                        sequence_no=installment.sequence_no,
                        due_at=installment.due_at,
                        amount_minor=installment.amount_minor,
                    )
                )
        return overdue

    def get_liquidation_logs(self, contract_id: str) -> List[LiquidationLogModel]:
        return self._logs.get_by_contract_id(contract_id)
