"""
Webhook authentication.

A notification batch is accepted only when it comes from the institution's
address and carries the shared secret. A configured test password lets a
caller stand in for the institution, so the pipeline can be exercised
without a real payment.
"""

import hmac
import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .config import Settings
from .errors import AddressNotAuthorized, InvalidCredential

logger = logging.getLogger(__name__)


class AuthDecision(str, Enum):
    ACCEPT = "ACCEPT"
    ADDRESS_NOT_AUTHORIZED = "ADDRESS_NOT_AUTHORIZED"
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"


class TrustConfig(BaseModel):
    trusted_address: str
    secret: str
    test_password: str = ""

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrustConfig":
        return cls(
            trusted_address=settings.efi_ip,
            secret=settings.hmac,
            test_password=settings.test_pass,
        )


def _equals(given: Optional[str], expected: str) -> bool:
    if given is None:
        return False
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


class Authenticator:
    def __init__(self, trust: TrustConfig):
        self._trust = trust

    @property
    def test_mode_enabled(self) -> bool:
        return bool(self._trust.test_password)

    def decide(
        self,
        source_address: Optional[str],
        token: Optional[str],
        test_value: Optional[str] = None,
    ) -> AuthDecision:
        if self.test_mode_enabled and _equals(test_value, self._trust.test_password):
            source_address = self._trust.trusted_address
            token = self._trust.secret

        if not self._trust.trusted_address or not _equals(source_address, self._trust.trusted_address):
            return AuthDecision.ADDRESS_NOT_AUTHORIZED
        if not token or not self._trust.secret or not _equals(token, self._trust.secret):
            return AuthDecision.INVALID_CREDENTIAL
        return AuthDecision.ACCEPT

    def authenticate(
        self,
        source_address: Optional[str],
        token: Optional[str],
        test_value: Optional[str] = None,
    ) -> None:
        decision = self.decide(source_address, token, test_value)
        if decision == AuthDecision.ADDRESS_NOT_AUTHORIZED:
            logger.warning(f"Rejected webhook from unauthorized address {source_address!r}")
            raise AddressNotAuthorized("IP Denied")
        if decision == AuthDecision.INVALID_CREDENTIAL:
            logger.warning(f"Rejected webhook from {source_address!r}: invalid credential")
            raise InvalidCredential("Invalid HMAC")
