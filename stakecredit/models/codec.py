"""Fixed-width little-endian record codecs for persisted credit state.

Layout rules shared by every record:

* integers are little-endian and unsigned unless noted (``Q`` u64,
  ``I`` u32, ``H`` u16, ``B`` u8);
* strings are a u16 byte length followed by UTF-8 bytes;
* timestamps are signed i64 microseconds since the Unix epoch, UTC;
* optional timestamps are a u8 presence flag followed by the i64;
* enums are stored as their u8 declaration index.

Values that do not fit their slot raise ``ArithmeticOverflow`` instead of
wrapping. Truncated or trailing bytes raise ``ModelValidationError``.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
import struct
from typing import List, Optional, Type, TypeVar

from .collaterals import CollateralPositionModel, position_key
from .contracts import ContractModel, InstallmentStateModel
from .credit_scores import CreditScoreModel
from .enums import ContractStatus, InstallmentStatus, PositionStatus, ScoreReason
from .exceptions import ArithmeticOverflow, ModelValidationError


logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MICROSECOND = timedelta(microseconds=1)
_NO_ENUM = 0xFF

POSITION_MAGIC = b"SCP1"
CONTRACT_MAGIC = b"SCC1"
SCORE_MAGIC = b"SCS1"

EnumT = TypeVar("EnumT", bound=Enum)


class _Writer:
    def __init__(self, magic: bytes) -> None:
        self._chunks: List[bytes] = [magic]

    def _pack(self, fmt: str, value: int, label: str) -> None:
        try:
            self._chunks.append(struct.pack("<" + fmt, value))
        except struct.error as exc:
            raise ArithmeticOverflow("{0} does not fit its field".format(label), value=value) from exc

    def u8(self, value: int, label: str) -> None:
        self._pack("B", value, label)

    def u16(self, value: int, label: str) -> None:
        self._pack("H", value, label)

    def u32(self, value: int, label: str) -> None:
        self._pack("I", value, label)

    def u64(self, value: int, label: str) -> None:
        self._pack("Q", value, label)

    def text(self, value: str, label: str) -> None:
        raw = value.encode("utf-8")
        self.u16(len(raw), label)
        self._chunks.append(raw)

    def timestamp(self, value: datetime, label: str) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        self._pack("q", (value - EPOCH) // _ONE_MICROSECOND, label)

    def optional_timestamp(self, value: Optional[datetime], label: str) -> None:
        self.u8(0 if value is None else 1, label)
        if value is not None:
            self.timestamp(value, label)

    def enum(self, value: Enum, label: str) -> None:
        self.u8(list(type(value)).index(value), label)

    def optional_enum(self, value: Optional[Enum], label: str) -> None:
        if value is None:
            self.u8(_NO_ENUM, label)
        else:
            self.enum(value, label)

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)


class _Reader:
    def __init__(self, data: bytes, magic: bytes) -> None:
        self._data = bytes(data)
        self._offset = 0
        if self._take(len(magic)) != magic:
            raise ModelValidationError("Unexpected record header")

    def _take(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise ModelValidationError("Record truncated at offset {0}".format(self._offset))
        chunk = self._data[self._offset:end]
        self._offset = end
        return chunk

    def _unpack(self, fmt: str) -> int:
        size = struct.calcsize("<" + fmt)
        return struct.unpack("<" + fmt, self._take(size))[0]

    def u8(self) -> int:
        return self._unpack("B")

    def u16(self) -> int:
        return self._unpack("H")

    def u32(self) -> int:
        return self._unpack("I")

    def u64(self) -> int:
        return self._unpack("Q")

    def text(self) -> str:
        length = self.u16()
        try:
            return self._take(length).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ModelValidationError("Invalid UTF-8 string in record") from exc

    def timestamp(self) -> datetime:
        micros = self._unpack("q")
        try:
            return EPOCH + timedelta(microseconds=micros)
        except OverflowError as exc:
            raise ArithmeticOverflow("timestamp out of range", value=micros) from exc

    def optional_timestamp(self) -> Optional[datetime]:
        return self.timestamp() if self.u8() else None

    def enum(self, enum_cls: Type[EnumT]) -> EnumT:
        index = self.u8()
        members = list(enum_cls)
        if index >= len(members):
            raise ModelValidationError("Unknown {0} index {1}".format(enum_cls.__name__, index))
        return members[index]

    def optional_enum(self, enum_cls: Type[EnumT]) -> Optional[EnumT]:
        index = self.u8()
        if index == _NO_ENUM:
            return None
        members = list(enum_cls)
        if index >= len(members):
            raise ModelValidationError("Unknown {0} index {1}".format(enum_cls.__name__, index))
        return members[index]

    def finish(self) -> None:
        if self._offset != len(self._data):
            raise ModelValidationError("Trailing bytes after record")


def encode_position(position: CollateralPositionModel) -> bytes:
    """Serialize a collateral position."""
    writer = _Writer(POSITION_MAGIC)
    writer.text(position.owner, "owner")
    writer.text(position.asset, "asset")
    writer.u64(position.principal, "principal")
    writer.timestamp(position.locked_until, "locked_until")
    writer.enum(position.status, "status")
    writer.u64(position.total_deposited, "total_deposited")
    writer.u64(position.total_liquidated, "total_liquidated")
    writer.u32(position.version, "version")
    writer.timestamp(position.created_at, "created_at")
    writer.timestamp(position.updated_at, "updated_at")
    return writer.getvalue()


def decode_position(data: bytes) -> CollateralPositionModel:
    """Parse bytes produced by :func:`encode_position`."""
    reader = _Reader(data, POSITION_MAGIC)
    owner = reader.text()
    asset = reader.text()
    position = CollateralPositionModel(
        id=position_key(owner, asset),
        owner=owner,
        asset=asset,
        principal=reader.u64(),
        locked_until=reader.timestamp(),
        status=reader.enum(PositionStatus),
        total_deposited=reader.u64(),
        total_liquidated=reader.u64(),
        version=reader.u32(),
        created_at=reader.timestamp(),
        updated_at=reader.timestamp(),
    )
    reader.finish()
    return position


def _encode_installment(writer: _Writer, item: InstallmentStateModel) -> None:
    writer.u16(item.sequence_no, "sequence_no")
    writer.timestamp(item.due_at, "due_at")
    writer.u64(item.amount_minor, "amount_minor")
    writer.enum(item.status, "installment_status")
    writer.optional_timestamp(item.settled_at, "settled_at")
    writer.u64(item.recovered_minor, "recovered_minor")
    writer.u64(item.penalty_minor, "penalty_minor")


def _decode_installment(reader: _Reader) -> InstallmentStateModel:
    return InstallmentStateModel(
        sequence_no=reader.u16(),
        due_at=reader.timestamp(),
        amount_minor=reader.u64(),
        status=reader.enum(InstallmentStatus),
        settled_at=reader.optional_timestamp(),
        recovered_minor=reader.u64(),
        penalty_minor=reader.u64(),
    )


def encode_contract(contract: ContractModel) -> bytes:
    """Serialize a contract header followed by its installments."""
    writer = _Writer(CONTRACT_MAGIC)
    writer.text(contract.contract_id, "contract_id")
    writer.text(contract.owner, "owner")
    writer.text(contract.merchant_id, "merchant_id")
    writer.text(contract.asset, "asset")
    writer.u32(contract.nonce, "nonce")
    writer.u64(contract.principal, "principal")
    writer.text(contract.benefit_tier, "benefit_tier")
    writer.u16(contract.fee_rate_bps, "fee_rate_bps")
    writer.u32(contract.limit_multiplier_bps, "limit_multiplier_bps")
    writer.u16(contract.cashback_rate_bps, "cashback_rate_bps")
    writer.u16(contract.penalty_rate_bps, "penalty_rate_bps")
    writer.u64(contract.total_due, "total_due")
    writer.u8(contract.installment_count, "installment_count")
    writer.u64(contract.installment_amount, "installment_amount")
    writer.u64(contract.final_installment_amount, "final_installment_amount")
    writer.u16(contract.interval_days, "interval_days")
    writer.u8(contract.paid_installments, "paid_installments")
    writer.u8(contract.missed_installments, "missed_installments")
    writer.enum(contract.status, "status")
    writer.optional_timestamp(contract.closed_at, "closed_at")
    writer.text(contract.schedule_hash or "", "schedule_hash")
    writer.u32(contract.version, "version")
    writer.timestamp(contract.created_at, "created_at")
    writer.timestamp(contract.updated_at, "updated_at")
    writer.u8(len(contract.installments), "installments")
    for item in contract.installments:
        _encode_installment(writer, item)
    return writer.getvalue()


def decode_contract(data: bytes) -> ContractModel:
    """Parse bytes produced by :func:`encode_contract`."""
    reader = _Reader(data, CONTRACT_MAGIC)
    contract_id = reader.text()
    fields = {
        "id": contract_id,
        "contract_id": contract_id,
        "owner": reader.text(),
        "merchant_id": reader.text(),
        "asset": reader.text(),
        "nonce": reader.u32(),
        "principal": reader.u64(),
        "benefit_tier": reader.text(),
        "fee_rate_bps": reader.u16(),
        "limit_multiplier_bps": reader.u32(),
        "cashback_rate_bps": reader.u16(),
        "penalty_rate_bps": reader.u16(),
        "total_due": reader.u64(),
        "installment_count": reader.u8(),
        "installment_amount": reader.u64(),
        "final_installment_amount": reader.u64(),
        "interval_days": reader.u16(),
        "paid_installments": reader.u8(),
        "missed_installments": reader.u8(),
        "status": reader.enum(ContractStatus),
        "closed_at": reader.optional_timestamp(),
        "schedule_hash": reader.text() or None,
        "version": reader.u32(),
        "created_at": reader.timestamp(),
        "updated_at": reader.timestamp(),
    }
    count = reader.u8()
    fields["installments"] = [_decode_installment(reader) for _ in range(count)]
    reader.finish()
    return ContractModel(**fields)


def encode_score(record: CreditScoreModel) -> bytes:
    """Serialize a credit score record."""
    writer = _Writer(SCORE_MAGIC)
    writer.text(record.owner, "owner")
    writer.u16(record.score, "score")
    writer.u32(record.on_time_count, "on_time_count")
    writer.u32(record.late_count, "late_count")
    writer.u32(record.default_count, "default_count")
    writer.u32(record.completed_count, "completed_count")
    writer.u32(record.total_contracts, "total_contracts")
    writer.optional_enum(record.last_reason, "last_reason")
    writer.optional_timestamp(record.last_updated, "last_updated")
    writer.u32(record.version, "version")
    writer.timestamp(record.created_at, "created_at")
    writer.timestamp(record.updated_at, "updated_at")
    return writer.getvalue()


def decode_score(data: bytes) -> CreditScoreModel:
    """Parse bytes produced by :func:`encode_score`."""
    reader = _Reader(data, SCORE_MAGIC)
    owner = reader.text()
    record = CreditScoreModel(
        id=owner,
        owner=owner,
        score=reader.u16(),
        on_time_count=reader.u32(),
        late_count=reader.u32(),
        default_count=reader.u32(),
        completed_count=reader.u32(),
        total_contracts=reader.u32(),
        last_reason=reader.optional_enum(ScoreReason),
        last_updated=reader.optional_timestamp(),
        version=reader.u32(),
        created_at=reader.timestamp(),
        updated_at=reader.timestamp(),
    )
    reader.finish()
    return record
