"""Custody rail moving funds between owners, the vault, the treasury and merchants."""

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
import logging
from threading import RLock
from typing import Dict, List
from uuid import uuid4


logger = logging.getLogger(__name__)


def owner_account(owner: str) -> str:
    return "owner:{0}".format(owner)


def vault_account(asset: str) -> str:
    return "vault:{0}".format(asset)


def treasury_account(asset: str) -> str:
    return "treasury:{0}".format(asset)


def merchant_account(merchant_id: str) -> str:
    return "merchant:{0}".format(merchant_id)


@dataclass(frozen=True)
class Transfer:
    """One completed movement of funds."""

    transfer_id: str
    kind: str
    asset: str
    source: str
    destination: str
    amount: int
    reference: str


class CustodyGateway(ABC):
    """Transfer rail used by the credit core to move real funds."""

    @abstractmethod
    def collect_deposit(self, owner: str, asset: str, amount: int, reference: str) -> Transfer:
        """Move collateral from the owner into the vault."""

    @abstractmethod
    def release_collateral(self, owner: str, asset: str, amount: int, reference: str) -> Transfer:
        """Return collateral from the vault to the owner."""

    @abstractmethod
    def pay_merchant(self, merchant_id: str, asset: str, amount: int, reference: str) -> Transfer:
        """Pay a merchant the purchase principal from the treasury."""

    @abstractmethod
    def collect_installment(self, owner: str, asset: str, amount: int, reference: str) -> Transfer:
        """Move an installment payment from the owner to the treasury."""

    @abstractmethod
    def seize_collateral(self, owner: str, asset: str, amount: int, reference: str) -> Transfer:
        """Move liquidated collateral from the vault to the treasury."""

    @abstractmethod
    def reverse(self, transfer: Transfer) -> Transfer:
        """Undo a transfer that belongs to an aborted operation."""


class InMemoryCustodyGateway(CustodyGateway):
    """Records transfers and running balances per account.

    Balances may go negative for ``owner:`` and ``treasury:`` accounts, which
    stand for external wallets and protocol liquidity not modelled here.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._transfers: List[Transfer] = []
        self._balances: Dict[str, int] = defaultdict(int)

    def _move(self, kind: str, asset: str, source: str, destination: str, amount: int, reference: str) -> Transfer:
        if amount <= 0:
            raise ValueError("transfer amount must be > 0")
        transfer = Transfer(
            transfer_id="trf_{0}".format(uuid4().hex[:16]),
            kind=kind,
            asset=asset,
            source=source,
            destination=destination,
            amount=amount,
            reference=reference,
        )
        with self._lock:
            self._balances[source] -= amount
            self._balances[destination] += amount
            self._transfers.append(transfer)
        logger.info(
            "Custody transfer kind=%s asset=%s from=%s to=%s amount=%s ref=%s",
            kind,
            asset,
            source,
            destination,
            amount,
            reference,
        )
        return transfer

    def collect_deposit(self, owner: str, asset: str, amount: int, reference: str) -> Transfer:
        return self._move("DEPOSIT", asset, owner_account(owner), vault_account(asset), amount, reference)

    def release_collateral(self, owner: str, asset: str, amount: int, reference: str) -> Transfer:
        return self._move("RELEASE", asset, vault_account(asset), owner_account(owner), amount, reference)

    def pay_merchant(self, merchant_id: str, asset: str, amount: int, reference: str) -> Transfer:
        return self._move(
            "MERCHANT_PAYMENT",
            asset,
            treasury_account(asset),
            merchant_account(merchant_id),
            amount,
            reference,
        )

    def collect_installment(self, owner: str, asset: str, amount: int, reference: str) -> Transfer:
        return self._move("INSTALLMENT", asset, owner_account(owner), treasury_account(asset), amount, reference)

    def seize_collateral(self, owner: str, asset: str, amount: int, reference: str) -> Transfer:
        return self._move(
            "SEIZURE",
            asset,
            vault_account(asset),
            treasury_account(asset),
            amount,
            "{0}:{1}".format(owner, reference),
        )

    def reverse(self, transfer: Transfer) -> Transfer:
        return self._move(
            "REVERSAL",
            transfer.asset,
            transfer.destination,
            transfer.source,
            transfer.amount,
            transfer.transfer_id,
        )

    def balance(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def transfers(self, kind: str = "") -> List[Transfer]:
        with self._lock:
            return [item for item in self._transfers if not kind or item.kind == kind]


def queue_transfer(txn, custody: CustodyGateway, name: str, move) -> None:
    """Queue *move* as a commit-time effect that is reversed if a later effect fails.

    Args:
        txn: Active store transaction.
        custody: Gateway used to reverse the transfer.
        name: Effect label for logs.
        move: Zero-argument callable performing one custody transfer.
    """
    done: List[Transfer] = []

    def _apply() -> None:
        done.append(move())

    def _compensate() -> None:
        for transfer in reversed(done):
            custody.reverse(transfer)

    txn.add_effect(name, apply=_apply, compensate=_compensate)
