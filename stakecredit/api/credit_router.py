"""Credit router exposing collateral, contract, repayment and score APIs."""

import logging
from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from stakecredit.models.codec import encode_contract, encode_position, encode_score
from stakecredit.models.enums import ScoreReason, UserRole
from stakecredit.models.exceptions import (
    AlreadyInitialized,
    ArithmeticOverflow,
    BelowMinimumDeposit,
    CollateralNotFound,
    ContractNotActive,
    ContractNotFound,
    CreditError,
    GracePeriodNotExpired,
    InstallmentNotFound,
    InstallmentOverdue,
    InsufficientBalance,
    InsufficientCollateral,
    InvalidAmount,
    InvalidInstallmentCount,
    InvalidInterval,
    InvalidLockPeriod,
    ModelNotFoundError,
    ModelValidationError,
    ScoreNotFound,
    ScoreTooLow,
    StillLocked,
    TooManyContracts,
    Unauthorized,
    VersionConflictError,
)
from stakecredit.services.audit import list_events
from stakecredit.services.container import CreditServices


logger = logging.getLogger(__name__)

_NOT_FOUND = (ContractNotFound, ScoreNotFound, CollateralNotFound, InstallmentNotFound)
_CONFLICT = (
    StillLocked,
    InsufficientBalance,
    InsufficientCollateral,
    ScoreTooLow,
    AlreadyInitialized,
    ContractNotActive,
    GracePeriodNotExpired,
    InstallmentOverdue,
    TooManyContracts,
)
_INVALID = (
    BelowMinimumDeposit,
    InvalidLockPeriod,
    InvalidInterval,
    InvalidAmount,
    InvalidInstallmentCount,
    ArithmeticOverflow,
)

RECORD_MEDIA_TYPE = "application/octet-stream"


class DepositRequest(BaseModel):
    """Request payload for staking collateral."""

    owner: str = Field(..., min_length=1)
    asset: Optional[str] = Field(default=None, min_length=1, max_length=16)
    amount: int = Field(..., gt=0)
    lock_days: int = Field(..., gt=0)


class WithdrawRequest(BaseModel):
    """Request payload for releasing unlocked collateral."""

    owner: str = Field(..., min_length=1)
    asset: Optional[str] = Field(default=None, min_length=1, max_length=16)
    amount: int = Field(..., gt=0)


class CreateContractRequest(BaseModel):
    """Request payload for opening an installment contract."""

    owner: str = Field(..., min_length=1)
    merchant_id: str = Field(..., min_length=1)
    principal: int = Field(..., ge=0)
    installment_count: int = Field(..., gt=0)
    interval_days: int = Field(default=30, gt=0)
    asset: Optional[str] = Field(default=None, min_length=1, max_length=16)


class CheckRepaymentRequest(BaseModel):
    """Request payload for a permissionless liquidation check."""

    sequence_no: Optional[int] = Field(default=None, gt=0)


class ScoreDeltaRequest(BaseModel):
    """Request payload for a manual score adjustment."""

    delta: int = Field(..., ge=-1000, le=1000)
    reason: ScoreReason = Field(...)


def _require_role(role: Optional[str], allowed: set[str]) -> str:
    """Validate caller role for admin-like actions."""
    normalized = (role or "").strip().upper()
    if normalized not in allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient role. Required one of: {0}".format(", ".join(sorted(allowed))),
        )
    return normalized


def _raise_http(exc: Exception, action: str) -> NoReturn:
    """Translate a domain failure into the matching HTTP error."""
    if isinstance(exc, CreditError):
        detail: Any = exc.to_dict()
    else:
        detail = str(exc)

    if isinstance(exc, _NOT_FOUND) or isinstance(exc, ModelNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, Unauthorized):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, _CONFLICT) or isinstance(exc, VersionConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, _INVALID) or isinstance(exc, (ModelValidationError, ValueError)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        logger.exception("%s endpoint failed.", action)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    raise HTTPException(status_code=code, detail=detail) from exc


def build_credit_router(services: CreditServices) -> APIRouter:
    """Build the credit router over one service container."""
    router = APIRouter(prefix="/credit", tags=["credit"])

    @router.post("/collateral/deposit", summary="Stake collateral")
    def deposit(payload: DepositRequest, x_signer: Optional[str] = Header(default=None)) -> Dict[str, Any]:
        """Deposit collateral and extend the lock."""
        try:
            position = services.ledger.deposit(
                owner=payload.owner,
                asset=payload.asset,
                amount=payload.amount,
                lock_days=payload.lock_days,
                signer=x_signer,
            )
            return {"position": position.to_document()}
        except Exception as exc:
            _raise_http(exc, "Deposit")

    @router.post("/collateral/withdraw", summary="Withdraw unlocked collateral")
    def withdraw(payload: WithdrawRequest, x_signer: Optional[str] = Header(default=None)) -> Dict[str, Any]:
        """Release collateral after the lock expires."""
        try:
            position = services.ledger.withdraw(
                owner=payload.owner,
                asset=payload.asset,
                amount=payload.amount,
                signer=x_signer,
            )
            return {"position": position.to_document()}
        except Exception as exc:
            _raise_http(exc, "Withdraw")

    @router.get("/collateral/{owner}", summary="Collateral position")
    def get_collateral(owner: str, asset: Optional[str] = Query(default=None, min_length=1)) -> Dict[str, Any]:
        """Return the position with derived lock fields."""
        try:
            return services.ledger.collateral_status(owner, asset)
        except Exception as exc:
            _raise_http(exc, "Get collateral")

    @router.get("/collateral/{owner}/record", summary="Binary collateral record")
    def collateral_record(owner: str, asset: Optional[str] = Query(default=None, min_length=1)) -> Response:
        """Export the position in its fixed-width binary layout."""
        try:
            position = services.ledger.get_collateral(owner, asset)
            return Response(content=encode_position(position), media_type=RECORD_MEDIA_TYPE)
        except Exception as exc:
            _raise_http(exc, "Collateral record")

    @router.post("/contracts", summary="Open installment contract")
    def create_contract(
        payload: CreateContractRequest,
        x_signer: Optional[str] = Header(default=None),
    ) -> Dict[str, Any]:
        """Open a contract and pay the merchant."""
        try:
            contract = services.contracts.create_contract(
                owner=payload.owner,
                principal=payload.principal,
                installment_count=payload.installment_count,
                interval_days=payload.interval_days,
                merchant_id=payload.merchant_id,
                signer=x_signer,
                asset=payload.asset,
            )
            return {"contract": contract.to_document()}
        except Exception as exc:
            _raise_http(exc, "Create contract")

    @router.get("/contracts/{contract_id}", summary="Contract details")
    def get_contract(contract_id: str) -> Dict[str, Any]:
        """Return one contract with its schedule."""
        try:
            contract = services.contracts.get_contract(contract_id)
            return {"contract": services.contracts.describe_contract(contract)}
        except Exception as exc:
            _raise_http(exc, "Get contract")

    @router.get("/contracts/{contract_id}/record", summary="Binary contract record")
    def contract_record(contract_id: str) -> Response:
        """Export the contract and its schedule in the fixed-width binary layout."""
        try:
            contract = services.contracts.get_contract(contract_id)
            return Response(content=encode_contract(contract), media_type=RECORD_MEDIA_TYPE)
        except Exception as exc:
            _raise_http(exc, "Contract record")

    @router.get("/owners/{owner}/contracts", summary="Contracts by owner")
    def list_contracts(owner: str) -> Dict[str, Any]:
        """Return every contract of an owner."""
        try:
            items = [services.contracts.describe_contract(item) for item in services.contracts.list_contracts(owner)]
            return {"owner": owner, "count": len(items), "items": items}
        except Exception as exc:
            _raise_http(exc, "List contracts")

    @router.post("/contracts/{contract_id}/pay", summary="Pay next installment")
    def pay_installment(contract_id: str, x_signer: Optional[str] = Header(default=None)) -> Dict[str, Any]:
        """Pay the earliest unsettled installment."""
        try:
            return services.processor.pay_installment(contract_id, signer=x_signer).model_dump(mode="json")
        except Exception as exc:
            _raise_http(exc, "Pay installment")

    @router.post("/contracts/{contract_id}/check", summary="Check repayment")
    def check_repayment(
        contract_id: str,
        payload: Optional[CheckRepaymentRequest] = None,
        x_signer: Optional[str] = Header(default=None),
    ) -> Dict[str, Any]:
        """Liquidate collateral for an installment past its grace window."""
        try:
            report = services.processor.check_repayment(
                contract_id,
                sequence_no=payload.sequence_no if payload is not None else None,
                triggered_by=x_signer or "anonymous",
            )
            return report.model_dump(mode="json")
        except Exception as exc:
            _raise_http(exc, "Check repayment")

    @router.post("/contracts/{contract_id}/cancel", summary="Cancel contract")
    def cancel_contract(contract_id: str, x_signer: Optional[str] = Header(default=None)) -> Dict[str, Any]:
        """Cancel a contract with no payments made."""
        try:
            return {"contract": services.contracts.cancel_contract(contract_id, signer=x_signer).to_document()}
        except Exception as exc:
            _raise_http(exc, "Cancel contract")

    @router.get("/contracts/{contract_id}/liquidations", summary="Liquidation logs")
    def liquidation_logs(contract_id: str) -> Dict[str, Any]:
        """Return liquidation audit records of a contract."""
        try:
            services.contracts.get_contract(contract_id)
            items = [item.to_document() for item in services.processor.get_liquidation_logs(contract_id)]
            return {"contract_id": contract_id, "items": items}
        except Exception as exc:
            _raise_http(exc, "Liquidation logs")

    @router.get("/overdue", summary="Installments past grace")
    def overdue() -> Dict[str, Any]:
        """List installments a keeper may liquidate now."""
        try:
            items = [item.model_dump(mode="json") for item in services.processor.list_overdue()]
            return {"count": len(items), "items": items}
        except Exception as exc:
            _raise_http(exc, "Overdue")

    @router.post("/keeper/run", summary="Run one keeper cycle")
    async def run_keeper(x_role: Optional[str] = Header(default=None)) -> Dict[str, Any]:
        """Liquidate every installment past its grace window now."""
        _require_role(x_role, {UserRole.KEEPER.value, UserRole.ADMIN.value})
        try:
            return {"summary": await services.keeper.run_once()}
        except Exception as exc:
            _raise_http(exc, "Run keeper")

    @router.post("/scores/{owner}/initialize", summary="Initialise credit score")
    def initialize_score(owner: str, x_signer: Optional[str] = Header(default=None)) -> Dict[str, Any]:
        """Create the owner's score record."""
        try:
            return {"score": services.scores.initialize(owner, signer=x_signer).to_document()}
        except Exception as exc:
            _raise_http(exc, "Initialize score")

    @router.post("/scores/{owner}/delta", summary="Apply score delta")
    def apply_score_delta(
        owner: str,
        payload: ScoreDeltaRequest,
        x_role: Optional[str] = Header(default=None),
    ) -> Dict[str, Any]:
        """Adjust a score; restricted to score authorities."""
        _require_role(x_role, {UserRole.SCORE_AUTHORITY.value, UserRole.ADMIN.value})
        try:
            record = services.scores.apply_delta(owner, payload.delta, payload.reason)
            return {"score": record.to_document()}
        except Exception as exc:
            _raise_http(exc, "Apply score delta")

    @router.get("/scores/{owner}", summary="Credit score")
    def get_score(owner: str) -> Dict[str, Any]:
        """Return the owner's score record."""
        try:
            return {"score": services.scores.get_score(owner).to_document()}
        except Exception as exc:
            _raise_http(exc, "Get score")

    @router.get("/scores/{owner}/record", summary="Binary score record")
    def score_record(owner: str) -> Response:
        """Export the score record in its fixed-width binary layout."""
        try:
            return Response(content=encode_score(services.scores.get_score(owner)), media_type=RECORD_MEDIA_TYPE)
        except Exception as exc:
            _raise_http(exc, "Score record")

    @router.get("/scores/{owner}/stats", summary="Payment statistics")
    def payment_stats(owner: str) -> Dict[str, Any]:
        """Return repayment totals and on-time share."""
        try:
            return services.scores.get_payment_stats(owner)
        except Exception as exc:
            _raise_http(exc, "Payment stats")

    @router.get("/audit/events", summary="Audit-friendly event logs")
    def audit_events(limit: int = Query(default=100, ge=1, le=500)) -> Dict[str, Any]:
        """Return event trail for compliance/debugging."""
        items = list_events(services.store, limit=limit)
        return {"count": len(items), "items": items}

    return router
