import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from .models import RawReceipt, TransactionRecord

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def _safe_name(value: str) -> str:
    return _UNSAFE.sub("_", value) or "_"


class ArchiveSink(ABC):
    """Write-once store for raw receipts. Not authoritative; never read back by the ledger."""

    @abstractmethod
    def put(self, record: TransactionRecord) -> bool:
        """Store the receipt; returns False when it was already archived."""


class NullArchiveSink(ArchiveSink):
    def put(self, record: TransactionRecord) -> bool:
        return False


class FileArchiveSink(ArchiveSink):
    def __init__(self, root: str):
        self.root = Path(root)

    def path_for(self, record: TransactionRecord) -> Path:
        return self.root / _safe_name(record.txid) / f"{_safe_name(record.end_to_end_id)}.json"

    def put(self, record: TransactionRecord) -> bool:
        path = self.path_for(record)
        path.parent.mkdir(parents=True, exist_ok=True)
        blob = RawReceipt(
            end_to_end_id=record.end_to_end_id,
            txid=record.txid,
            amount=record.amount,
        ).model_dump_json(by_alias=True)
        try:
            with path.open("x", encoding="utf-8") as fh:
                fh.write(blob)
        except FileExistsError:
            logger.debug(f"Receipt {record.end_to_end_id} already archived")
            return False
        return True
