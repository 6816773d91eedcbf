"""Unit tests for contract creation, cancellation and settlement bookkeeping."""

from datetime import timedelta
import unittest

from stakecredit.core.config import BenefitTierSettings
from stakecredit.models.enums import ContractStatus, InstallmentStatus, PaymentOutcome
from stakecredit.models.exceptions import (
    ContractNotActive,
    ContractNotFound,
    InsufficientCollateral,
    InvalidAmount,
    InvalidInstallmentCount,
    InvalidInterval,
    ScoreNotFound,
    ScoreTooLow,
    TooManyContracts,
    Unauthorized,
    VersionConflictError,
)
from stakecredit.services.contract_manager import SettlementCapability
from stakecredit.services.custody import merchant_account
from stakecredit.tests.helpers import MERCHANT, OWNER, UNIT, make_services, make_settings, onboard, open_contract


class CreateContractTests(unittest.TestCase):
    """Validate contract opening rules."""

    def setUp(self) -> None:
        self.services = make_services()
        onboard(self.services)

    def test_schedule_matches_fee_and_split(self) -> None:
        contract = open_contract(self.services, principal_units=30, installment_count=3)
        self.assertEqual(contract.status, ContractStatus.ACTIVE)
        self.assertEqual(contract.total_due, 32_100_000)
        self.assertEqual([item.amount_minor for item in contract.installments], [10_700_000] * 3)
        created = self.services.clock.now()
        self.assertEqual(
            [item.due_at for item in contract.installments],
            [created + timedelta(days=30 * index) for index in (1, 2, 3)],
        )
        self.assertIsNotNone(contract.schedule_hash)

    def test_remainder_lands_on_final_installment(self) -> None:
        contract = open_contract(self.services, principal_units=10, installment_count=3)
        self.assertEqual(contract.installment_amount, 3_566_666)
        self.assertEqual(contract.final_installment_amount, 3_566_668)
        self.assertEqual(sum(item.amount_minor for item in contract.installments), contract.total_due)

    def test_merchant_paid_in_full(self) -> None:
        contract = open_contract(self.services, principal_units=30)
        self.assertEqual(self.services.custody.balance(merchant_account(MERCHANT)), 30 * UNIT)
        self.assertEqual(self.services.scores.get_score(OWNER).total_contracts, 1)
        self.assertEqual(self.services.contracts.get_contract(contract.contract_id), contract)

    def test_contract_ids_are_unique_per_owner(self) -> None:
        first = open_contract(self.services, principal_units=10)
        second = open_contract(self.services, principal_units=10)
        self.assertNotEqual(first.contract_id, second.contract_id)
        self.assertEqual([item.nonce for item in self.services.contracts.list_contracts(OWNER)], [0, 1])

    def test_principal_above_collateral_is_rejected(self) -> None:
        """Nothing is written and the merchant is not paid."""
        with self.assertRaises(InsufficientCollateral):
            open_contract(self.services, principal_units=101)
        self.assertEqual(self.services.contracts.list_contracts(OWNER), [])
        self.assertEqual(self.services.custody.balance(merchant_account(MERCHANT)), 0)
        self.assertEqual(self.services.scores.get_score(OWNER).total_contracts, 0)

    def test_parameter_validation(self) -> None:
        with self.assertRaises(InvalidInstallmentCount):
            open_contract(self.services, installment_count=5)
        with self.assertRaises(InvalidInterval):
            open_contract(self.services, interval_days=14)
        with self.assertRaises(InvalidInterval):
            open_contract(self.services, interval_days=91)
        with self.assertRaises(InvalidAmount):
            open_contract(self.services, principal_units=0)

    def test_tier_restricts_installment_counts(self) -> None:
        services = make_services(make_settings(benefits=BenefitTierSettings(allowed_installments=(3, 4))))
        onboard(services)
        with self.assertRaises(InvalidInstallmentCount):
            open_contract(services, installment_count=6)

    def test_score_below_tier_minimum(self) -> None:
        services = make_services(make_settings(owner_benefits={OWNER: BenefitTierSettings(min_score=600)}))
        onboard(services)
        with self.assertRaises(ScoreTooLow):
            open_contract(services)

    def test_requires_score_record(self) -> None:
        self.services.ledger.deposit("bob", None, 50 * UNIT, 30, signer="bob")
        with self.assertRaises(ScoreNotFound):
            open_contract(self.services, owner="bob")

    def test_signer_must_be_owner(self) -> None:
        with self.assertRaises(Unauthorized):
            self.services.contracts.create_contract(OWNER, 10 * UNIT, 3, 30, MERCHANT, signer="mallory")

    def test_yearly_contract_cap(self) -> None:
        for _ in range(5):
            open_contract(self.services, principal_units=10)
        with self.assertRaises(TooManyContracts):
            open_contract(self.services, principal_units=10)

    def test_cap_window_slides(self) -> None:
        for _ in range(5):
            open_contract(self.services, principal_units=10)
        self.services.clock.advance(days=366)
        self.services.ledger.deposit(OWNER, None, 10 * UNIT, 30, signer=OWNER)
        open_contract(self.services, principal_units=10)

    def test_open_contracts_do_not_reserve_collateral(self) -> None:
        """Each contract is checked against the whole position."""
        first = open_contract(self.services, principal_units=60)
        second = open_contract(self.services, principal_units=60)
        self.assertNotEqual(first.contract_id, second.contract_id)
        self.assertEqual(self.services.ledger.available_credit(OWNER, None, 10000), 100 * UNIT)

    def test_cashback_credited(self) -> None:
        services = make_services(make_settings(benefits=BenefitTierSettings(cashback_rate_bps=100)))
        onboard(services)
        open_contract(services, principal_units=30)
        self.assertEqual(services.yield_sink.balance_of(OWNER), 300_000)

    def test_penalty_rate_snapshot(self) -> None:
        services = make_services(make_settings(owner_benefits={OWNER: BenefitTierSettings(penalty_rate_bps=500)}))
        onboard(services)
        contract = open_contract(services)
        self.assertEqual(contract.penalty_rate_bps, 500)


class CancelContractTests(unittest.TestCase):
    """Cancellation is only possible before any settlement."""

    def setUp(self) -> None:
        self.services = make_services()
        onboard(self.services)
        self.contract = open_contract(self.services)

    def test_cancel_fresh_contract(self) -> None:
        cancelled = self.services.contracts.cancel_contract(self.contract.contract_id, signer=OWNER)
        self.assertEqual(cancelled.status, ContractStatus.CANCELLED)
        self.assertIsNotNone(cancelled.closed_at)
        self.assertEqual(self.services.contracts.list_active(), [])

    def test_cancel_after_payment_rejected(self) -> None:
        self.services.processor.pay_installment(self.contract.contract_id, signer=OWNER)
        with self.assertRaises(ContractNotActive):
            self.services.contracts.cancel_contract(self.contract.contract_id, signer=OWNER)

    def test_cancel_requires_owner(self) -> None:
        with self.assertRaises(Unauthorized):
            self.services.contracts.cancel_contract(self.contract.contract_id, signer="mallory")

    def test_cancelled_contract_not_counted_toward_cap(self) -> None:
        self.services.contracts.cancel_contract(self.contract.contract_id, signer=OWNER)
        for _ in range(5):
            open_contract(self.services, principal_units=10)

    def test_unknown_contract(self) -> None:
        with self.assertRaises(ContractNotFound):
            self.services.contracts.get_contract("missing-contract")


class SettlementCapabilityTests(unittest.TestCase):
    """Only the processor may record settlements."""

    def setUp(self) -> None:
        self.services = make_services()
        onboard(self.services)
        self.contract = open_contract(self.services)
        self.capability = self.services.processor._settlement_capability

    def test_forged_capability_rejected(self) -> None:
        forged = SettlementCapability(holder=self.capability.holder, token=self.capability.token)
        with self.assertRaises(Unauthorized):
            self.services.contracts.record_payment(forged, self.contract.contract_id, 1, PaymentOutcome.PAID)

    def test_capability_granted_once(self) -> None:
        with self.assertRaises(Unauthorized):
            self.services.contracts.grant_settlement_capability("intruder")

    def test_installment_settles_at_most_once(self) -> None:
        manager = self.services.contracts
        updated = manager.record_payment(self.capability, self.contract.contract_id, 1, PaymentOutcome.PAID)
        self.assertEqual(updated.installment(1).status, InstallmentStatus.PAID)
        self.assertEqual(updated.paid_installments, 1)
        with self.assertRaises(VersionConflictError):
            manager.record_payment(self.capability, self.contract.contract_id, 1, PaymentOutcome.PAID)


if __name__ == "__main__":
    unittest.main()
