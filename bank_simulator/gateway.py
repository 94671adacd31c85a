"""
Transfer Gateway Client Module

REST client for the external interbank transfer service (SEPA and SWIFT).
The service answers each request with a success/failure verdict that the
simulator treats as final. An offline SimulatedTransferGateway stands in for
the service when it is not reachable or not wanted (tests, what-if runs).
"""

import httpx
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from .config import SimulatorConfig, get_config
from .currency import quantize_amount
from .errors import ServiceUnavailableError
from .logging_config import get_logger

logger = get_logger("banksim.gateway")


class TransferMechanism(Enum):
    """External transfer rails"""
    SEPA = "sepa"
    SWIFT = "swift"


@dataclass
class RecipientDetails:
    """Beneficiary of an external transfer"""
    mechanism: TransferMechanism
    account: str                            # IBAN (SEPA) or account number (SWIFT)
    name: str = "Beneficiary"
    bank_code: str = "ETHNGRAA"             # BIC / SWIFT code
    bank_name: str = "National Bank of Greece"
    address: str = "Unknown Address"       # SWIFT only
    country: str = "XX"                     # SWIFT only
    currency: str = "EUR"
    charges: str = "SHA"                    # SHA (shared) or OUR (sender pays)
    requested_date: Optional[date] = None


@dataclass
class TransferResult:
    """Verdict returned by the gateway"""
    success: bool
    message: str
    transaction_id: Optional[str] = None


class TransferGateway(ABC):
    """Interface of the external transfer service"""

    @abstractmethod
    def execute_transfer(self, amount: Decimal, recipient: RecipientDetails) -> TransferResult:
        """Submit a transfer; the result is authoritative"""
        pass

    def health_check(self) -> bool:
        return True

    def close(self) -> None:
        pass


class HttpTransferGateway(TransferGateway):
    """REST client for the transfer simulation service"""

    SEPA_ENDPOINT = "/transfer/sepa"
    SWIFT_ENDPOINT = "/transfer/swift"

    def __init__(
        self,
        base_url: str = "http://localhost:3020",
        timeout: float = 10.0,
        api_key: Optional[str] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = httpx.Client(timeout=timeout)

    @staticmethod
    def _sepa_payload(amount: Decimal, recipient: RecipientDetails) -> dict:
        requested = recipient.requested_date or date.today()
        return {
            "amount": float(quantize_amount(amount)),
            "creditor": {
                "name": recipient.name,
                "iban": recipient.account
            },
            "creditorBank": {
                "bic": recipient.bank_code,
                "name": recipient.bank_name
            },
            "execution": {
                "requestedDate": requested.isoformat(),
                "charges": recipient.charges
            }
        }

    @staticmethod
    def _swift_payload(amount: Decimal, recipient: RecipientDetails) -> dict:
        return {
            "currency": recipient.currency,
            "amount": float(quantize_amount(amount)),
            "beneficiary": {
                "name": recipient.name,
                "address": recipient.address,
                "account": recipient.account
            },
            "beneficiaryBank": {
                "name": recipient.bank_name,
                "swiftCode": recipient.bank_code,
                "country": recipient.country
            },
            "fees": {
                "chargingModel": recipient.charges
            },
            "correspondentBank": {
                "required": False
            }
        }

    def execute_transfer(self, amount: Decimal, recipient: RecipientDetails) -> TransferResult:
        """
        POST the transfer to the service.

        Success requires HTTP 200 and a body with status "success".

        Raises:
            ServiceUnavailableError: If the service cannot be reached
        """
        if recipient.mechanism == TransferMechanism.SEPA:
            url = f"{self.base_url}{self.SEPA_ENDPOINT}"
            payload = self._sepa_payload(amount, recipient)
        else:
            url = f"{self.base_url}{self.SWIFT_ENDPOINT}"
            payload = self._swift_payload(amount, recipient)

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        start = time.time()
        try:
            response = self._client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Transfer service connection failed: {e}")
            raise ServiceUnavailableError(f"Transfer service unavailable: {e}") from e
        latency_ms = (time.time() - start) * 1000

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        message = data.get("message") or f"HTTP {response.status_code}"
        success = response.status_code == 200 and data.get("status") == "success"
        if not success:
            logger.warning(
                f"{recipient.mechanism.value.upper()} transfer rejected "
                f"({response.status_code}, {latency_ms:.0f} ms): {message}"
            )

        return TransferResult(
            success=success,
            message=message,
            transaction_id=data.get("transaction_id") if success else None
        )

    def health_check(self) -> bool:
        """Check if the transfer service is reachable"""
        try:
            r = self._client.get(f"{self.base_url}/health")
            return r.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self):
        """Close the HTTP client"""
        self._client.close()


class SimulatedTransferGateway(TransferGateway):
    """Offline gateway succeeding with a fixed probability"""

    def __init__(self, success_rate: float = 0.75, seed: Optional[int] = None):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self._random = random.Random(seed)
        self._counter = 0

    def execute_transfer(self, amount: Decimal, recipient: RecipientDetails) -> TransferResult:
        mechanism = recipient.mechanism.value.upper()
        if self._random.random() >= self.success_rate:
            return TransferResult(False, f"{mechanism} transfer rejected by receiving bank")

        self._counter += 1
        return TransferResult(
            success=True,
            message=f"{mechanism} transfer accepted",
            transaction_id=f"{mechanism}-SIM-{self._counter:08d}"
        )


def create_gateway(config: Optional[SimulatorConfig] = None) -> TransferGateway:
    """Build the gateway selected by configuration"""
    config = config or get_config()
    if config.gateway_enabled:
        return HttpTransferGateway(
            base_url=config.gateway_base_url,
            timeout=config.gateway_timeout
        )
    return SimulatedTransferGateway(success_rate=config.gateway_success_rate)
