import logging
from collections.abc import Mapping
from typing import Any, Iterator

from pydantic import ValidationError

from .errors import MalformedRecord
from .models import ParseOutcome, PixNotification, TransactionRecord

logger = logging.getLogger(__name__)

BATCH_FIELD = "pix"


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "item"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def parse_item(item: Any, index: int) -> TransactionRecord:
    if not isinstance(item, Mapping):
        raise MalformedRecord("item is not an object", index)
    try:
        notification = PixNotification.model_validate(dict(item))
    except ValidationError as e:
        raise MalformedRecord(_describe(e), index) from e
    return notification.to_record()


def parse_batch(payload: Any) -> list[ParseOutcome]:
    """Validate every item of the batch, keeping input order.

    A payload without a ``pix`` list is an empty batch, not an error.
    """
    if not isinstance(payload, Mapping):
        return []
    items = payload.get(BATCH_FIELD)
    if not isinstance(items, list):
        return []

    outcomes = []
    for index, item in enumerate(items):
        try:
            outcomes.append(ParseOutcome(index=index, record=parse_item(item, index)))
        except MalformedRecord as e:
            logger.warning(f"Skipping malformed notification #{index}: {e}")
            outcomes.append(ParseOutcome(index=index, error=str(e)))
    return outcomes


def extract_records(payload: Any) -> Iterator[TransactionRecord]:
    for outcome in parse_batch(payload):
        if outcome.record is not None:
            yield outcome.record
