import logging
from decimal import Decimal
from typing import Any, Optional

from .archive import ArchiveSink, FileArchiveSink, NullArchiveSink
from .auth import Authenticator, TrustConfig
from .config import ConsumptionMode, Settings
from .db import init_db, make_engine, make_session_factory
from .errors import StoreError
from .models import (
    AccrualOutcome,
    AuthContext,
    BatchResult,
    ConsumeResult,
    LedgerEntry,
    Receipt,
    TransactionRecord,
    UnitConsumeResult,
)
from .normalizer import parse_batch
from .report import entries_table, receipts_table
from .retry import RetryConfig, retry_call
from .store import LedgerStore

logger = logging.getLogger(__name__)


class LedgerService:
    def __init__(
        self,
        store: LedgerStore,
        authenticator: Authenticator,
        archive: Optional[ArchiveSink] = None,
        retry_config: Optional[RetryConfig] = None,
        consumption_mode: ConsumptionMode = ConsumptionMode.BALANCE,
        unit_price: Decimal = Decimal("1.00"),
    ):
        self.store = store
        self.authenticator = authenticator
        self.archive = archive or NullArchiveSink()
        self.retry_config = retry_config or RetryConfig()
        self.consumption_mode = consumption_mode
        self.unit_price = unit_price

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerService":
        engine = make_engine(settings.database_url)
        init_db(engine)
        store = LedgerStore(make_session_factory(engine), max_cas_attempts=settings.max_cas_attempts)
        archive = FileArchiveSink(settings.archive_dir) if settings.archive_dir else None
        return cls(
            store=store,
            authenticator=Authenticator(TrustConfig.from_settings(settings)),
            archive=archive,
            retry_config=RetryConfig(
                max_attempts=settings.retry_attempts,
                base_delay=settings.retry_base_delay,
            ),
            consumption_mode=settings.consumption_mode,
            unit_price=settings.unit_price,
        )

    def authenticate(self, auth: AuthContext) -> None:
        self.authenticator.authenticate(auth.source_address, auth.token, auth.test_value)

    def ingest(self, payload: Any, auth: AuthContext) -> BatchResult:
        """Authenticate a notification batch, then apply it."""
        self.authenticate(auth)
        return self.apply_batch(payload)

    def apply_batch(self, payload: Any) -> BatchResult:
        """Fold the records of an already authenticated batch into the ledger.

        Each record stands alone: malformed items are skipped, records
        whose accrual keeps failing are reported in ``failed_ids``, and
        records already committed stay committed.
        """
        logger.debug(f"Webhook payload: {payload}")

        outcomes = parse_batch(payload)
        result = BatchResult(received=len(outcomes))
        for outcome in outcomes:
            if outcome.record is None:
                result.skipped += 1
                continue
            record = outcome.record
            try:
                accrual = retry_call(self.store.accrue, self.retry_config, record)
            except StoreError as e:
                logger.error(f"Failed to accrue {record.end_to_end_id} for txid {record.txid}: {e}")
                result.failed += 1
                result.failed_ids.append(record.end_to_end_id)
                continue

            if accrual == AccrualOutcome.DUPLICATE:
                result.duplicates += 1
            else:
                result.applied += 1
                self._archive(record)

        logger.info(
            f"Batch processed: {result.applied} applied, {result.duplicates} duplicates, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result

    def _archive(self, record: TransactionRecord) -> None:
        try:
            self.archive.put(record)
        except Exception:
            logger.exception(f"Archiving receipt {record.end_to_end_id} failed; ledger unaffected")

    def consume(self, txid: str) -> ConsumeResult:
        amount = retry_call(self.store.consume, self.retry_config, txid)
        return ConsumeResult(txid=txid, amount=amount)

    def consume_units(self, txid: str, unit_price: Optional[Decimal] = None) -> UnitConsumeResult:
        consumption = retry_call(
            self.store.consume_units, self.retry_config, txid, unit_price or self.unit_price
        )
        return UnitConsumeResult(txid=txid, **consumption.model_dump())

    def get_entry(self, txid: str) -> LedgerEntry:
        return self.store.get_entry(txid)

    def set_unit_price(self, txid: str, unit_price: Optional[Decimal]) -> LedgerEntry:
        return self.store.set_unit_price(txid, unit_price)

    def list_entries(self) -> list[LedgerEntry]:
        return self.store.list_entries()

    def list_receipts(self, txid: Optional[str] = None) -> list[Receipt]:
        return self.store.list_receipts(txid)

    def render_table(self, name: str) -> str:
        if name == "consultas":
            return entries_table(self.list_entries())
        if name == "recebimentos":
            return receipts_table(self.list_receipts())
        raise ValueError(f"table {name!r} is not available for reporting")
