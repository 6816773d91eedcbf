"""Unit tests for collateral staking, locks and forced debits."""

import unittest

from stakecredit.models.enums import PositionStatus
from stakecredit.models.exceptions import (
    BelowMinimumDeposit,
    CollateralNotFound,
    InsufficientBalance,
    InvalidAmount,
    InvalidLockPeriod,
    StillLocked,
    Unauthorized,
)
from stakecredit.services.collateral_ledger import LiquidationCapability
from stakecredit.services.collaborators import StaticAccessPolicy
from stakecredit.services.custody import owner_account, vault_account
from stakecredit.tests.helpers import OWNER, UNIT, make_services


class CollateralLedgerTests(unittest.TestCase):
    """Validate deposit, withdrawal and liquidation flows."""

    def setUp(self) -> None:
        self.services = make_services()
        self.ledger = self.services.ledger
        self.clock = self.services.clock

    def test_deposit_creates_locked_position(self) -> None:
        position = self.ledger.deposit(OWNER, None, 10 * UNIT, 30, signer=OWNER)
        self.assertEqual(position.asset, "USDC")
        self.assertEqual(position.principal, 10 * UNIT)
        self.assertEqual((position.locked_until - self.clock.now()).days, 30)
        self.assertEqual(self.services.custody.balance(vault_account("USDC")), 10 * UNIT)
        self.assertEqual(self.services.custody.balance(owner_account(OWNER)), -10 * UNIT)

    def test_withdraw_before_unlock_is_rejected(self) -> None:
        """A fresh deposit cannot be withdrawn until its lock expires."""
        self.ledger.deposit(OWNER, None, 10 * UNIT, 30, signer=OWNER)
        with self.assertRaises(StillLocked):
            self.ledger.withdraw(OWNER, None, 10 * UNIT, signer=OWNER)
        self.assertEqual(self.ledger.get_collateral(OWNER).principal, 10 * UNIT)

    def test_withdraw_all_after_unlock_marks_withdrawn(self) -> None:
        self.ledger.deposit(OWNER, None, 10 * UNIT, 30, signer=OWNER)
        self.clock.advance(days=30)
        position = self.ledger.withdraw(OWNER, None, 10 * UNIT, signer=OWNER)
        self.assertEqual(position.principal, 0)
        self.assertEqual(position.status, PositionStatus.WITHDRAWN)
        self.assertEqual(self.services.custody.balance(vault_account("USDC")), 0)

    def test_redeposit_reactivates_withdrawn_position(self) -> None:
        self.ledger.deposit(OWNER, None, 10 * UNIT, 7, signer=OWNER)
        self.clock.advance(days=7)
        self.ledger.withdraw(OWNER, None, 10 * UNIT, signer=OWNER)
        position = self.ledger.deposit(OWNER, None, 12 * UNIT, 7, signer=OWNER)
        self.assertEqual(position.status, PositionStatus.ACTIVE)
        self.assertEqual(position.principal, 12 * UNIT)
        self.assertEqual(position.total_deposited, 22 * UNIT)

    def test_lock_never_shortens(self) -> None:
        first = self.ledger.deposit(OWNER, None, 10 * UNIT, 60, signer=OWNER)
        second = self.ledger.deposit(OWNER, None, 10 * UNIT, 7, signer=OWNER)
        self.assertEqual(second.locked_until, first.locked_until)
        third = self.ledger.deposit(OWNER, None, 10 * UNIT, 90, signer=OWNER)
        self.assertGreater(third.locked_until, first.locked_until)

    def test_deposit_validation(self) -> None:
        with self.assertRaises(BelowMinimumDeposit):
            self.ledger.deposit(OWNER, None, 10 * UNIT - 1, 30, signer=OWNER)
        with self.assertRaises(InvalidLockPeriod):
            self.ledger.deposit(OWNER, None, 10 * UNIT, 6, signer=OWNER)
        with self.assertRaises(InvalidLockPeriod):
            self.ledger.deposit(OWNER, None, 10 * UNIT, 366, signer=OWNER)
        with self.assertRaises(CollateralNotFound):
            self.ledger.get_collateral(OWNER)

    def test_signer_must_be_owner(self) -> None:
        with self.assertRaises(Unauthorized):
            self.ledger.deposit(OWNER, None, 10 * UNIT, 30, signer="mallory")
        with self.assertRaises(Unauthorized):
            self.ledger.deposit(OWNER, None, 10 * UNIT, 30, signer=None)

    def test_access_list_is_enforced(self) -> None:
        services = make_services(access_policy=StaticAccessPolicy(allow_all=False, owners=["bob"]))
        with self.assertRaises(Unauthorized):
            services.ledger.deposit(OWNER, None, 10 * UNIT, 30, signer=OWNER)
        services.ledger.deposit("bob", None, 10 * UNIT, 30, signer="bob")

    def test_withdraw_validation(self) -> None:
        with self.assertRaises(CollateralNotFound):
            self.ledger.withdraw(OWNER, None, UNIT, signer=OWNER)
        self.ledger.deposit(OWNER, None, 10 * UNIT, 7, signer=OWNER)
        self.clock.advance(days=8)
        with self.assertRaises(InvalidAmount):
            self.ledger.withdraw(OWNER, None, 0, signer=OWNER)
        with self.assertRaises(InsufficientBalance):
            self.ledger.withdraw(OWNER, None, 11 * UNIT, signer=OWNER)

    def test_collateral_status_reports_lock(self) -> None:
        self.ledger.deposit(OWNER, None, 10 * UNIT, 30, signer=OWNER)
        self.clock.advance(days=10)
        status = self.ledger.collateral_status(OWNER)
        self.assertTrue(status["is_locked"])
        self.assertEqual(status["unlocks_in_days"], 20)

    def test_available_credit(self) -> None:
        self.assertEqual(self.ledger.available_credit(OWNER, None, 10000), 0)
        self.ledger.deposit(OWNER, None, 40 * UNIT, 30, signer=OWNER)
        self.assertEqual(self.ledger.available_credit(OWNER, None, 10000), 40 * UNIT)
        self.assertEqual(self.ledger.available_credit(OWNER, None, 15000), 60 * UNIT)


class LiquidationDebitTests(unittest.TestCase):
    """Forced debits require the ledger-issued capability."""

    def setUp(self) -> None:
        self.services = make_services()
        self.ledger = self.services.ledger
        self.capability = self.services.processor._liquidation_capability
        self.ledger.deposit(OWNER, None, 10 * UNIT, 30, signer=OWNER)

    def test_debit_ignores_lock(self) -> None:
        debited = self.ledger.liquidation_debit(self.capability, OWNER, None, 4 * UNIT)
        self.assertEqual(debited, 4 * UNIT)
        position = self.ledger.get_collateral(OWNER)
        self.assertEqual(position.principal, 6 * UNIT)
        self.assertEqual(position.total_liquidated, 4 * UNIT)

    def test_debit_is_capped_at_principal(self) -> None:
        debited = self.ledger.liquidation_debit(self.capability, OWNER, None, 25 * UNIT)
        self.assertEqual(debited, 10 * UNIT)
        self.assertEqual(self.ledger.get_collateral(OWNER).principal, 0)
        self.assertEqual(self.ledger.liquidation_debit(self.capability, OWNER, None, UNIT), 0)

    def test_debit_without_position_returns_zero(self) -> None:
        self.assertEqual(self.ledger.liquidation_debit(self.capability, "bob", None, UNIT), 0)

    def test_forged_capability_rejected(self) -> None:
        forged = LiquidationCapability(holder=self.capability.holder, token=self.capability.token)
        with self.assertRaises(Unauthorized):
            self.ledger.liquidation_debit(forged, OWNER, None, UNIT)

    def test_capability_granted_once(self) -> None:
        with self.assertRaises(Unauthorized):
            self.ledger.grant_liquidation_capability("intruder")


if __name__ == "__main__":
    unittest.main()
