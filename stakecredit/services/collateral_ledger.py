"""Collateral custody: staking, lock periods, withdrawals and forced debits."""

from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from stakecredit.common.protocol_constants import (
    add_days,
    checked_add,
    checked_sub,
    credit_limit,
    days_until,
    ensure_u64,
)
from stakecredit.core.clock import Clock
from stakecredit.core.config import ProtocolPolicy
from stakecredit.models.collaterals import CollateralPositionModel, position_key
from stakecredit.models.enums import PositionStatus
from stakecredit.models.exceptions import (
    BelowMinimumDeposit,
    CollateralNotFound,
    CreditError,
    InsufficientBalance,
    InvalidAmount,
    InvalidLockPeriod,
    ModelError,
    StillLocked,
    Unauthorized,
)
from stakecredit.models.repositories import CollateralRepository
from stakecredit.repositories.memory_store import DocumentStore

from .audit import record_event
from .collaborators import AccessPolicy, authorize_owner
from .custody import CustodyGateway, queue_transfer


logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class LiquidationCapability:
    """Unforgeable token allowing its holder to force-debit collateral."""

    holder: str
    token: str


class CollateralLedger:
    """Holds each owner's collateral per asset and enforces lock periods."""

    def __init__(
        self,
        store: DocumentStore,
        positions: CollateralRepository,
        custody: CustodyGateway,
        access_policy: AccessPolicy,
        clock: Clock,
        policy: ProtocolPolicy,
    ) -> None:
        self._store = store
        self._positions = positions
        self._custody = custody
        self._access_policy = access_policy
        self._clock = clock
        self._policy = policy
        self._liquidation_capability: Optional[LiquidationCapability] = None

    def grant_liquidation_capability(self, holder: str) -> LiquidationCapability:
        """Issue the single liquidation capability.

        Raises:
            Unauthorized: If the capability was already issued.
        """
        if self._liquidation_capability is not None:
            raise Unauthorized("Liquidation capability already granted", holder=holder)
        self._liquidation_capability = LiquidationCapability(holder=holder, token=uuid4().hex)
        logger.info("Liquidation capability granted holder=%s", holder)
        return self._liquidation_capability

    def _asset(self, asset: Optional[str]) -> str:
        return (asset or self._policy.default_asset).strip().upper()

    def deposit(
        self,
        owner: str,
        asset: Optional[str],
        amount: int,
        lock_days: int,
        signer: Optional[str],
    ) -> CollateralPositionModel:
        """Stake collateral and extend the lock.

        Args:
            owner: Position owner.
            asset: Asset symbol; the configured default when omitted.
            amount: Minor units to deposit.
            lock_days: Lock length measured from now.
            signer: Caller identity, must equal ``owner``.

        Returns:
            CollateralPositionModel: Position after the deposit.

        Raises:
            Unauthorized: If the signer is not an allow-listed owner.
            BelowMinimumDeposit: If ``amount`` is below the protocol minimum.
            InvalidLockPeriod: If ``lock_days`` is outside the allowed range.
            ArithmeticOverflow: If the new principal leaves the u64 range.
        """
        asset = self._asset(asset)
        try:
            authorize_owner(self._access_policy, owner, signer)
            ensure_u64(amount)
            if amount < self._policy.min_deposit_minor:
                raise BelowMinimumDeposit(
                    "Deposit below minimum",
                    amount=amount,
                    minimum=self._policy.min_deposit_minor,
                )
            if not self._policy.min_lock_days <= lock_days <= self._policy.max_lock_days:
                raise InvalidLockPeriod("Lock period out of range", lock_days=lock_days)

            with self._store.transaction() as txn:
                now = self._clock.now()
                requested_lock = add_days(now, lock_days)
                position = self._positions.find(position_key(owner, asset))
                if position is None:
                    position = CollateralPositionModel(
                        owner=owner,
                        asset=asset,
                        principal=amount,
                        locked_until=requested_lock,
                        total_deposited=amount,
                        created_at=now,
                        updated_at=now,
                    )
                    position = self._positions.create(position)
                else:
                    new_principal = checked_add(position.principal, amount)
                    if position.status == PositionStatus.WITHDRAWN:
                        position.status = PositionStatus.ACTIVE
                    position.principal = new_principal
                    position.locked_until = max(position.locked_until, requested_lock)
                    position.total_deposited = checked_add(position.total_deposited, amount)
                    position.updated_at = now
                    position = self._positions.update(position)

                queue_transfer(
                    txn,
                    self._custody,
                    "collect_deposit",
                    lambda: self._custody.collect_deposit(owner, asset, amount, position.position_id),
                )
                record_event(
                    self._store,
                    "COLLATERAL_DEPOSITED",
                    owner,
                    {"asset": asset, "amount": amount, "locked_until": position.locked_until.isoformat()},
                    now,
                )
            logger.info(
                "Collateral deposited owner=%s asset=%s amount=%s principal=%s locked_until=%s",
                owner,
                asset,
                amount,
                position.principal,
                position.locked_until.isoformat(),
            )
            return position
        except CreditError as exc:
            logger.warning("Deposit rejected owner=%s asset=%s code=%s", owner, asset, exc.code)
            raise
        except ModelError:
            raise
        except Exception:
            logger.exception("Failed collateral deposit owner=%s asset=%s", owner, asset)
            raise

    def withdraw(
        self,
        owner: str,
        asset: Optional[str],
        amount: int,
        signer: Optional[str],
    ) -> CollateralPositionModel:
        """Release unlocked collateral back to the owner.

        Raises:
            Unauthorized: If the signer is not an allow-listed owner.
            CollateralNotFound: If the owner has no position in ``asset``.
            StillLocked: If the lock has not expired.
            InsufficientBalance: If ``amount`` exceeds the principal.
        """
        asset = self._asset(asset)
        try:
            authorize_owner(self._access_policy, owner, signer)
            ensure_u64(amount)
            if amount == 0:
                raise InvalidAmount("Withdrawal amount must be > 0")

            with self._store.transaction() as txn:
                now = self._clock.now()
                position = self._positions.find(position_key(owner, asset))
                if position is None:
                    raise CollateralNotFound("No collateral position", owner=owner, asset=asset)
                if position.is_locked(now):
                    raise StillLocked(
                        "Collateral is still locked",
                        locked_until=position.locked_until.isoformat(),
                    )
                if amount > position.principal:
                    raise InsufficientBalance(
                        "Withdrawal exceeds principal",
                        amount=amount,
                        principal=position.principal,
                    )

                position.principal = checked_sub(position.principal, amount)
                if position.principal == 0:
                    position.status = PositionStatus.WITHDRAWN
                position.updated_at = now
                position = self._positions.update(position)

                queue_transfer(
                    txn,
                    self._custody,
                    "release_collateral",
                    lambda: self._custody.release_collateral(owner, asset, amount, position.position_id),
                )
                record_event(self._store, "COLLATERAL_WITHDRAWN", owner, {"asset": asset, "amount": amount}, now)
            logger.info(
                "Collateral withdrawn owner=%s asset=%s amount=%s principal=%s status=%s",
                owner,
                asset,
                amount,
                position.principal,
                position.status.value,
            )
            return position
        except CreditError as exc:
            logger.warning("Withdrawal rejected owner=%s asset=%s code=%s", owner, asset, exc.code)
            raise
        except ModelError:
            raise
        except Exception:
            logger.exception("Failed collateral withdrawal owner=%s asset=%s", owner, asset)
            raise

    def liquidation_debit(
        self,
        capability: LiquidationCapability,
        owner: str,
        asset: Optional[str],
        amount: int,
    ) -> int:
        """Force-debit up to ``amount`` regardless of the lock.

        Returns:
            int: Amount actually debited, ``min(amount, principal)``.

        Raises:
            Unauthorized: If ``capability`` is not the ledger-issued one.
        """
        if self._liquidation_capability is None or capability is not self._liquidation_capability:
            logger.warning("Liquidation debit refused owner=%s: invalid capability", owner)
            raise Unauthorized("Caller does not hold the liquidation capability", owner=owner)
        asset = self._asset(asset)
        ensure_u64(amount)

        with self._store.transaction() as txn:
            now = self._clock.now()
            position = self._positions.find(position_key(owner, asset))
            if position is None:
                logger.warning("Liquidation debit found no position owner=%s asset=%s", owner, asset)
                return 0
            debited = min(amount, position.principal)
            if debited == 0:
                return 0

            position.principal = checked_sub(position.principal, debited)
            position.total_liquidated = checked_add(position.total_liquidated, debited)
            position.updated_at = now
            position = self._positions.update(position)

            queue_transfer(
                txn,
                self._custody,
                "seize_collateral",
                lambda: self._custody.seize_collateral(owner, asset, debited, position.position_id),
            )
            record_event(
                self._store,
                "COLLATERAL_LIQUIDATED",
                capability.holder,
                {"owner": owner, "asset": asset, "requested": amount, "debited": debited},
                now,
            )
        logger.info(
            "Collateral liquidated owner=%s asset=%s requested=%s debited=%s principal=%s",
            owner,
            asset,
            amount,
            debited,
            position.principal,
        )
        return debited

    def get_collateral(self, owner: str, asset: Optional[str] = None) -> CollateralPositionModel:
        """Return the position snapshot.

        Raises:
            CollateralNotFound: If the owner has no position in ``asset``.
        """
        asset = self._asset(asset)
        position = self._positions.find(position_key(owner, asset))
        if position is None:
            raise CollateralNotFound("No collateral position", owner=owner, asset=asset)
        return position

    def collateral_status(self, owner: str, asset: Optional[str] = None) -> Dict[str, Any]:
        """Position snapshot with derived lock fields."""
        position = self.get_collateral(owner, asset)
        now = self._clock.now()
        payload = position.to_document()
        payload["is_locked"] = position.is_locked(now)
        payload["unlocks_in_days"] = days_until(now, position.locked_until)
        return payload

    def available_credit(self, owner: str, asset: Optional[str], limit_multiplier_bps: int) -> int:
        """Maximum contract principal the position supports; 0 without a position."""
        position = self._positions.find(position_key(owner, self._asset(asset)))
        if position is None:
            return 0
        return credit_limit(position.principal, self._policy.collateral_ratio_bps, limit_multiplier_bps)
