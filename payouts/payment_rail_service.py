"""
Payment Rail Service - confirmation of collections and payouts

The engine never talks to a real gateway. A rail receives a snapshot of
the transaction being executed and answers, eventually, with a
RailResult. Rejections are results, not exceptions.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional

from payouts.config import settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RailRequest:
    """What the rail sees of a transaction"""
    transaction_id: int
    schedule_id: int
    reference: str
    transaction_type: str
    payment_method: str
    amount: float


@dataclass(frozen=True)
class RailResult:
    success: bool
    failure_reason: Optional[str] = None

    @classmethod
    def confirmed(cls) -> "RailResult":
        return cls(success=True)

    @classmethod
    def rejected(cls, reason: str) -> "RailResult":
        return cls(success=False, failure_reason=reason)


class PaymentRail:
    """Interface for anything that can confirm a collection or payout"""

    async def confirm(self, request: RailRequest) -> RailResult:
        raise NotImplementedError


class SimulatedPaymentRail(PaymentRail):
    """
    Confirms after a fixed delay; rejects a configurable share of requests.

    Rejection reasons mimic what the finance team sees per payment method.
    """

    FAILURE_REASONS = {
        "bank_transfer": "Bank transfer failed - insufficient account details",
        "mobile_wallet": "Mobile wallet provider declined the transfer",
        "cash": "Cash collection not confirmed by field agent",
        "check": "Check returned by bank",
    }

    def __init__(
        self,
        delay_seconds: float = settings.RAIL_SIMULATED_DELAY_SECONDS,
        failure_rate: float = settings.RAIL_SIMULATED_FAILURE_RATE,
        rng: Optional[random.Random] = None,
    ):
        self.delay_seconds = delay_seconds
        self.failure_rate = failure_rate
        self.rng = rng or random.Random()

    async def confirm(self, request: RailRequest) -> RailResult:
        await asyncio.sleep(self.delay_seconds)

        if self.rng.random() < self.failure_rate:
            reason = self.FAILURE_REASONS.get(request.payment_method, "Payment rail rejected the transaction")
            log.warning(f"Rail rejected {request.reference}: {reason}")
            return RailResult.rejected(reason)

        log.info(f"Rail confirmed {request.reference} amount={request.amount}")
        return RailResult.confirmed()
