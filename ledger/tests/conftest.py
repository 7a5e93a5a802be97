from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger.config import Settings
from ledger.db import init_db, make_engine, make_session_factory
from ledger.models import TransactionRecord
from ledger.service import LedgerService
from ledger.store import LedgerStore


TRUSTED_IP = "34.193.116.226"
SECRET = "efi-shared-hmac"
TEST_PASS = "sandbox-pass"
HIDE_PARAM = "ignorar"
BASE_TIME = datetime(2025, 4, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        efi_ip=TRUSTED_IP,
        hmac=SECRET,
        test_pass=TEST_PASS,
        hide_param=HIDE_PARAM,
        database_url=f"sqlite:///{tmp_path / 'ledger.db'}",
        retry_base_delay=0.0,
        log_level="DEBUG",
    )


@pytest.fixture
def store(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield LedgerStore(make_session_factory(engine), max_cas_attempts=settings.max_cas_attempts)
    engine.dispose()


@pytest.fixture
def service(settings):
    return LedgerService.from_settings(settings)


@pytest.fixture
def make_record():
    def _make(end_to_end_id, txid="maquina01", amount="10.00", minutes=0, payer_name="Maria Pagadora"):
        return TransactionRecord(
            end_to_end_id=end_to_end_id,
            txid=txid,
            pix_key="pix@example.com",
            amount=Decimal(amount),
            timestamp=BASE_TIME + timedelta(minutes=minutes),
            payer_name=payer_name,
        )
    return _make


@pytest.fixture
def pix_item():
    def _item(end_to_end_id, txid="maquina01", valor="10.00", **overrides):
        item = {
            "endToEndId": end_to_end_id,
            "txid": txid,
            "chave": "pix@example.com",
            "valor": valor,
            "horario": "2025-04-01T12:00:00.000Z",
            "gnExtras": {"pagador": {"nome": "Maria Pagadora", "cpf": "***.456.789-**"}},
        }
        item.update(overrides)
        return item
    return _item
