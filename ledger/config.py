from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConsumptionMode(str, Enum):
    BALANCE = "balance"
    UNITS = "units"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    # Trust anchors for the payment institution
    efi_ip: str = ""
    hmac: str = ""
    hide_param: str = "test"
    test_pass: str = ""
    client_ip_header: str = "CF-Connecting-IP"

    database_url: str = "sqlite:///./ledger.db"

    consumption_mode: ConsumptionMode = ConsumptionMode.BALANCE
    unit_price: Decimal = Field(default=Decimal("1.00"), gt=0)
    max_cas_attempts: int = Field(default=5, ge=1)

    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = 0.05

    archive_dir: Optional[str] = None

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
