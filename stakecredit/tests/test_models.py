"""Unit tests for document models and their business validators."""

from datetime import datetime, timedelta, timezone
import unittest

from pydantic import ValidationError

from stakecredit.models.collaterals import CollateralPositionModel, position_key
from stakecredit.models.contracts import ContractModel, InstallmentStateModel, contract_key
from stakecredit.models.credit_scores import CreditScoreModel
from stakecredit.models.enums import (
    ContractStatus,
    InstallmentStatus,
    LiquidationActionType,
    PositionStatus,
)
from stakecredit.models.exceptions import ModelValidationError
from stakecredit.models.liquidation_logs import LiquidationLogModel


START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _installments(amounts, interval_days=30):
    return [
        InstallmentStateModel(
            sequence_no=index,
            due_at=START + timedelta(days=interval_days * index),
            amount_minor=amount,
        )
        for index, amount in enumerate(amounts, start=1)
    ]


def _contract(**overrides) -> ContractModel:
    installments = overrides.pop("installments", _installments([10_700_000] * 3))
    payload = {
        "contract_id": contract_key("alice", 0),
        "owner": "alice",
        "merchant_id": "mer_201",
        "asset": "USDC",
        "principal": 30_000_000,
        "fee_rate_bps": 700,
        "limit_multiplier_bps": 10000,
        "penalty_rate_bps": 1000,
        "total_due": 32_100_000,
        "installment_count": 3,
        "installment_amount": 10_700_000,
        "final_installment_amount": 10_700_000,
        "interval_days": 30,
        "installments": installments,
    }
    payload.update(overrides)
    return ContractModel(**payload)


class CollateralModelTests(unittest.TestCase):
    """Validate collateral position rules."""

    def test_position_key_uppercases_asset(self) -> None:
        self.assertEqual(position_key("alice", "usdc"), "alice:USDC")

    def test_withdrawn_position_must_be_empty(self) -> None:
        """A WITHDRAWN position with principal is rejected."""
        with self.assertRaises(ValidationError):
            CollateralPositionModel(
                owner="alice",
                asset="USDC",
                principal=5,
                locked_until=START,
                status=PositionStatus.WITHDRAWN,
            )

    def test_lock_boundary_is_exclusive(self) -> None:
        """The position unlocks exactly at locked_until."""
        position = CollateralPositionModel(owner="alice", asset="USDC", principal=1, locked_until=START)
        self.assertTrue(position.is_locked(START - timedelta(seconds=1)))
        self.assertFalse(position.is_locked(START))

    def test_negative_principal_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            CollateralPositionModel(owner="alice", asset="USDC", principal=-1, locked_until=START)


class ContractModelTests(unittest.TestCase):
    """Validate contract schedule and counters."""

    def test_contract_key_is_deterministic(self) -> None:
        self.assertEqual(contract_key("alice", 0), contract_key("alice", 0))
        self.assertNotEqual(contract_key("alice", 0), contract_key("alice", 1))
        self.assertEqual(len(contract_key("alice", 0)), 32)

    def test_installment_count_must_match_schedule(self) -> None:
        with self.assertRaises(ValidationError):
            _contract(installment_count=4)

    def test_completed_requires_every_installment_settled(self) -> None:
        with self.assertRaises(ValidationError):
            _contract(status=ContractStatus.COMPLETED)

    def test_paid_counter_cannot_exceed_count(self) -> None:
        with self.assertRaises(ValidationError):
            _contract(paid_installments=4)

    def test_paid_and_missed_counters_share_the_schedule(self) -> None:
        _contract(paid_installments=2, missed_installments=1)
        with self.assertRaises(ValidationError):
            _contract(paid_installments=2, missed_installments=2)

    def test_grace_waiting_is_never_stored(self) -> None:
        with self.assertRaises(ValidationError):
            InstallmentStateModel(
                sequence_no=1,
                due_at=START,
                amount_minor=1,
                status=InstallmentStatus.GRACE_WAITING,
            )

    def test_effective_status_inside_grace(self) -> None:
        """PENDING reads as GRACE_WAITING between due date and grace deadline."""
        item = _installments([100])[0]
        self.assertEqual(item.effective_status(item.due_at, 15), InstallmentStatus.PENDING)
        inside = item.due_at + timedelta(days=1)
        self.assertEqual(item.effective_status(inside, 15), InstallmentStatus.GRACE_WAITING)
        deadline = item.grace_deadline(15)
        self.assertFalse(item.is_past_grace(deadline, 15))
        self.assertTrue(item.is_past_grace(deadline + timedelta(seconds=1), 15))

    def test_next_unsettled_skips_paid(self) -> None:
        contract = _contract()
        contract.installments[0].status = InstallmentStatus.PAID
        self.assertEqual(contract.next_unsettled().sequence_no, 2)
        self.assertTrue(contract.has_settlements())
        self.assertFalse(contract.all_settled())

    def test_validate_schedule_accepts_generated_schedule(self) -> None:
        ContractModel.validate_schedule(_installments([10_700_000] * 3), expected_total_minor=32_100_000)

    def test_validate_schedule_rejects_sum_mismatch(self) -> None:
        with self.assertRaises(ModelValidationError):
            ContractModel.validate_schedule(_installments([10_700_000] * 3), expected_total_minor=32_100_001)

    def test_validate_schedule_rejects_unordered_due_dates(self) -> None:
        installments = _installments([1, 1])
        installments[1].due_at = installments[0].due_at
        with self.assertRaises(ModelValidationError):
            ContractModel.validate_schedule(installments, expected_total_minor=2)

    def test_validate_schedule_rejects_gaps(self) -> None:
        installments = _installments([1, 1])
        installments[1].sequence_no = 3
        with self.assertRaises(ModelValidationError):
            ContractModel.validate_schedule(installments, expected_total_minor=2)

    def test_document_round_trip(self) -> None:
        contract = _contract(id="abc")
        restored = ContractModel.from_document(contract.to_document())
        self.assertEqual(restored, contract)

    def test_from_document_wraps_errors(self) -> None:
        with self.assertRaises(ModelValidationError):
            ContractModel.from_document({"owner": "alice"})


class CreditScoreModelTests(unittest.TestCase):
    """Validate score bounds and derived stats."""

    def test_on_time_percentage(self) -> None:
        record = CreditScoreModel(owner="alice", score=500, on_time_count=3, late_count=1)
        self.assertEqual(record.total_payments, 4)
        self.assertEqual(record.on_time_percentage(), 75.0)

    def test_on_time_percentage_without_payments(self) -> None:
        self.assertEqual(CreditScoreModel(owner="alice", score=500).on_time_percentage(), 0.0)

    def test_score_is_u16(self) -> None:
        with self.assertRaises(ValidationError):
            CreditScoreModel(owner="alice", score=70_000)


class LiquidationLogModelTests(unittest.TestCase):
    """Validate recovery math on liquidation logs."""

    def _log(self, **overrides) -> LiquidationLogModel:
        payload = {
            "log_id": "liq_1",
            "contract_id": "c_1",
            "owner": "alice",
            "asset": "USDC",
            "sequence_no": 1,
            "triggered_at": START,
            "triggered_by": "keeper",
            "installment_minor": 100,
            "penalty_minor": 10,
            "needed_minor": 110,
            "seized_minor": 110,
            "outcome": LiquidationActionType.FULL_RECOVERY,
        }
        payload.update(overrides)
        return LiquidationLogModel(**payload)

    def test_full_recovery(self) -> None:
        self.assertEqual(self._log().outcome, LiquidationActionType.FULL_RECOVERY)

    def test_partial_recovery(self) -> None:
        log = self._log(seized_minor=40, outcome=LiquidationActionType.PARTIAL_RECOVERY)
        self.assertEqual(log.seized_minor, 40)

    def test_outcome_must_match_seized_amount(self) -> None:
        with self.assertRaises(ValidationError):
            self._log(seized_minor=40)

    def test_needed_must_include_penalty(self) -> None:
        with self.assertRaises(ValidationError):
            self._log(needed_minor=100, seized_minor=100)


if __name__ == "__main__":
    unittest.main()
