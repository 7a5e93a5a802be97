"""
Durable credit ledger.

Balances live in ``ledger_entries`` (one row per txid, amounts in cents) and
every applied notification lives in ``receipts``, whose primary key on
``end_to_end_id`` doubles as the redelivery guard.

Every write to an entry bumps its ``version``. Consumption resets a balance
with a compare-and-swap on that version, so two readers of the same txid can
never both walk away with the same credit, and unrelated txids never wait on
each other.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .errors import NotFound, StoreConflict, StoreRejected, StoreUnavailable
from .models import (
    AccrualOutcome,
    LedgerEntry,
    Receipt,
    ReceiptKind,
    TransactionRecord,
    UnitConsumption,
    from_cents,
    to_cents,
)
from .tables import LedgerEntryRow, ReceiptRow

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE = "40001"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _entry(row: LedgerEntryRow) -> LedgerEntry:
    return LedgerEntry(
        txid=row.txid,
        accrued_amount=from_cents(row.accrued_cents),
        last_updated=row.last_updated,
        consumed=row.consumed,
        version=row.version,
        unit_price=from_cents(row.unit_price_cents) if row.unit_price_cents is not None else None,
    )


def _receipt(row: ReceiptRow) -> Receipt:
    return Receipt(
        end_to_end_id=row.end_to_end_id,
        txid=row.txid,
        payer_name=row.payer_name,
        pix_key=row.pix_key,
        amount=from_cents(row.amount_cents),
        timestamp=row.timestamp,
        kind=ReceiptKind(row.kind),
        used=row.used,
    )


class LedgerStore:
    def __init__(self, session_factory: sessionmaker, max_cas_attempts: int = 5):
        self._session_factory = session_factory
        self.max_cas_attempts = max_cas_attempts

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except (OperationalError, DisconnectionError) as e:
            if getattr(getattr(e, "orig", None), "pgcode", None) == SERIALIZATION_FAILURE:
                raise StoreConflict(str(e)) from e
            raise StoreUnavailable(str(e)) from e
        except IntegrityError as e:
            raise StoreConflict(str(e)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StoreUnavailable(str(e)) from e
            raise StoreRejected(str(e)) from e

    def accrue(self, record: TransactionRecord) -> AccrualOutcome:
        cents = record.amount_cents
        timestamp = _as_utc(record.timestamp)
        with self._session() as session:
            session.add(ReceiptRow(
                end_to_end_id=record.end_to_end_id,
                txid=record.txid,
                payer_name=record.payer_name,
                pix_key=record.pix_key,
                amount_cents=cents,
                timestamp=timestamp,
                kind=ReceiptKind.PIX.value,
                used=False,
            ))
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                logger.info(f"Duplicate notification {record.end_to_end_id} for txid {record.txid} ignored")
                return AccrualOutcome.DUPLICATE

            self._add_to_entry(session, record.txid, cents, timestamp)
            session.commit()

        logger.info(f"Accrued {cents} cents to txid {record.txid} ({record.end_to_end_id})")
        return AccrualOutcome.APPLIED

    def _add_to_entry(self, session: Session, txid: str, cents: int, timestamp: datetime) -> None:
        increment = (
            update(LedgerEntryRow)
            .where(LedgerEntryRow.txid == txid)
            .values(
                accrued_cents=LedgerEntryRow.accrued_cents + cents,
                version=LedgerEntryRow.version + 1,
                consumed=False,
                last_updated=timestamp,
            )
            .execution_options(synchronize_session=False)
        )
        if session.execute(increment).rowcount:
            return
        try:
            with session.begin_nested():
                session.add(LedgerEntryRow(
                    txid=txid,
                    accrued_cents=cents,
                    last_updated=timestamp,
                    consumed=False,
                    version=1,
                ))
        except IntegrityError:
            # another writer created the entry between our update and insert
            session.execute(increment)

    def consume(self, txid: str) -> Decimal:
        for attempt in range(1, self.max_cas_attempts + 1):
            with self._session() as session:
                row = session.get(LedgerEntryRow, txid)
                if row is None:
                    raise NotFound(f"txid {txid} not found")
                balance = row.accrued_cents
                if balance == 0:
                    return from_cents(0)

                if self._swap(session, row, accrued_cents=0):
                    session.commit()
                    logger.info(f"Consumed {balance} cents from txid {txid}")
                    return from_cents(balance)
                session.rollback()
            logger.warning(f"Concurrent update on txid {txid}, consume attempt {attempt} retrying")
        raise StoreConflict(f"could not consume txid {txid} after {self.max_cas_attempts} attempts")

    def consume_units(self, txid: str, unit_price: Decimal) -> UnitConsumption:
        """Dispense whole units and carry the remainder into the next cycle.

        Receipts that contributed to the dispensed balance are flagged ``used``;
        any remainder is re-recorded as a single ``carry`` receipt so that the
        unused receipts of a txid always add up to its balance.
        """
        for attempt in range(1, self.max_cas_attempts + 1):
            with self._session() as session:
                row = session.get(LedgerEntryRow, txid)
                if row is None:
                    raise NotFound(f"txid {txid} not found")
                unit_cents = row.unit_price_cents or to_cents(unit_price)
                if unit_cents <= 0:
                    raise ValueError("unit price must be at least one cent")

                units, remainder = divmod(row.accrued_cents, unit_cents)
                if units == 0:
                    return UnitConsumption(
                        units=0,
                        unit_price=from_cents(unit_cents),
                        remainder=from_cents(remainder),
                    )

                now = _utcnow()
                if not self._swap(session, row, accrued_cents=remainder, last_updated=now):
                    session.rollback()
                    logger.warning(f"Concurrent update on txid {txid}, unit consume attempt {attempt} retrying")
                    continue

                session.execute(
                    update(ReceiptRow)
                    .where(ReceiptRow.txid == txid, ReceiptRow.used.is_(False))
                    .values(used=True)
                    .execution_options(synchronize_session=False)
                )
                if remainder:
                    session.add(ReceiptRow(
                        end_to_end_id=f"carry-{uuid4().hex}",
                        txid=txid,
                        amount_cents=remainder,
                        timestamp=now,
                        kind=ReceiptKind.CARRY.value,
                        used=False,
                    ))
                session.commit()

            logger.info(f"Dispensed {units} units from txid {txid}, {remainder} cents carried over")
            return UnitConsumption(
                units=units,
                unit_price=from_cents(unit_cents),
                remainder=from_cents(remainder),
            )
        raise StoreConflict(f"could not consume units for txid {txid} after {self.max_cas_attempts} attempts")

    def _swap(self, session: Session, row: LedgerEntryRow, accrued_cents: int,
              last_updated: Optional[datetime] = None) -> bool:
        result = session.execute(
            update(LedgerEntryRow)
            .where(LedgerEntryRow.txid == row.txid, LedgerEntryRow.version == row.version)
            .values(
                accrued_cents=accrued_cents,
                consumed=True,
                version=row.version + 1,
                last_updated=last_updated or _utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def get_entry(self, txid: str) -> LedgerEntry:
        with self._session() as session:
            row = session.get(LedgerEntryRow, txid)
            if row is None:
                raise NotFound(f"txid {txid} not found")
            return _entry(row)

    def set_unit_price(self, txid: str, unit_price: Optional[Decimal]) -> LedgerEntry:
        cents = to_cents(unit_price) if unit_price is not None else None
        if cents is not None and cents <= 0:
            raise ValueError("unit price must be at least one cent")
        with self._session() as session:
            row = session.get(LedgerEntryRow, txid)
            if row is None:
                raise NotFound(f"txid {txid} not found")
            row.unit_price_cents = cents
            session.commit()
            return _entry(row)

    def list_entries(self) -> list[LedgerEntry]:
        with self._session() as session:
            rows = session.scalars(
                select(LedgerEntryRow).order_by(LedgerEntryRow.last_updated.desc(), LedgerEntryRow.txid)
            ).all()
            return [_entry(r) for r in rows]

    def list_receipts(self, txid: Optional[str] = None) -> list[Receipt]:
        stmt = select(ReceiptRow).order_by(ReceiptRow.timestamp.desc(), ReceiptRow.end_to_end_id)
        if txid is not None:
            stmt = stmt.where(ReceiptRow.txid == txid)
        with self._session() as session:
            return [_receipt(r) for r in session.scalars(stmt).all()]
