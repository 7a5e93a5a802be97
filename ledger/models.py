from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


CENT = Decimal("0.01")
PAYER_NAME_MAX = 200


def round_to_cents(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    return int(round_to_cents(amount) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


class AccrualOutcome(str, Enum):
    APPLIED = "APPLIED"
    DUPLICATE = "DUPLICATE"


class ReceiptKind(str, Enum):
    PIX = "pix"
    CARRY = "carry"


class Payer(BaseModel):
    nome: Optional[str] = None


class GnExtras(BaseModel):
    pagador: Optional[Payer] = None


class PixNotification(BaseModel):
    """One item of the ``pix`` array posted by the institution."""

    end_to_end_id: str = Field(..., alias="endToEndId", min_length=1, max_length=64)
    txid: str = Field(..., min_length=1, max_length=64)
    chave: str = Field(..., min_length=1, max_length=140)
    valor: Decimal
    horario: datetime
    gn_extras: Optional[GnExtras] = Field(default=None, alias="gnExtras")

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "endToEndId": "E12345678202504011200abcdef123456",
                "txid": "maquina01",
                "chave": "pix@example.com",
                "valor": "10.00",
                "horario": "2025-04-01T12:00:00.000Z",
                "gnExtras": {"pagador": {"nome": "Maria Pagadora"}},
            }
        },
    )

    @field_validator("valor")
    @classmethod
    def amount_must_be_positive(cls, value: Decimal) -> Decimal:
        if not value.is_finite() or round_to_cents(value) <= 0:
            raise ValueError("valor must be at least one cent")
        return value

    def to_record(self) -> "TransactionRecord":
        payer = self.gn_extras.pagador if self.gn_extras else None
        return TransactionRecord(
            end_to_end_id=self.end_to_end_id,
            txid=self.txid,
            pix_key=self.chave,
            amount=self.valor,
            timestamp=self.horario,
            payer_name=payer.nome[:PAYER_NAME_MAX] if payer and payer.nome else None,
        )


class TransactionRecord(BaseModel):
    end_to_end_id: str
    txid: str
    pix_key: str
    amount: Decimal
    timestamp: datetime
    payer_name: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


class ParseOutcome(BaseModel):
    index: int
    record: Optional[TransactionRecord] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


class LedgerEntry(BaseModel):
    txid: str
    accrued_amount: Decimal
    last_updated: Optional[datetime] = None
    consumed: bool = False
    version: int = 0
    unit_price: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)


class Receipt(BaseModel):
    end_to_end_id: str
    txid: str
    payer_name: Optional[str] = None
    pix_key: Optional[str] = None
    amount: Decimal
    timestamp: Optional[datetime] = None
    kind: ReceiptKind = ReceiptKind.PIX
    used: bool = False

    model_config = ConfigDict(from_attributes=True)


class RawReceipt(BaseModel):
    end_to_end_id: str = Field(..., serialization_alias="endToEndId")
    txid: str
    amount: Decimal


class UnitConsumption(BaseModel):
    units: int
    unit_price: Decimal
    remainder: Decimal


class BatchResult(BaseModel):
    received: int = 0
    applied: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: list[str] = Field(default_factory=list)


class AuthContext(BaseModel):
    source_address: Optional[str] = None
    token: Optional[str] = None
    test_value: Optional[str] = None


class WebhookResponse(BaseModel):
    success: bool
    message: str
    result: BatchResult


class ConsumeResult(BaseModel):
    txid: str
    amount: Decimal


class UnitConsumeResult(BaseModel):
    txid: str
    units: int
    unit_price: Decimal
    remainder: Decimal
