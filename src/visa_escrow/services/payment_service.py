"""Payment Service — captures client deposits through a payment provider.

For MVP: provides a simulated provider that issues realistic-looking
references per payment method, for local runs and tests without a real
processor. A real processor adapter only needs to satisfy the
PaymentProvider protocol.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from visa_escrow.domain.enums import PaymentMethod
from visa_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from visa_escrow.domain.money import Money

logger = get_logger(__name__)

_REFERENCE_PREFIX = {
    PaymentMethod.STRIPE: "pi_",
    PaymentMethod.PAYPAL: "PAYID-",
    PaymentMethod.BANK_TRANSFER: "bt_",
}


class SimulatedPaymentProvider:
    """Captures payments without moving money.

    ``fixed_reference`` makes every capture return the same reference, which
    lets tests replay a payment event.
    """

    def __init__(self, fixed_reference: str | None = None) -> None:
        self._fixed_reference = fixed_reference

    async def capture(self, amount: Money, method: PaymentMethod, payer_id: uuid.UUID) -> str:
        """Simulate capturing ``amount`` and return the provider reference."""
        reference = self._fixed_reference or f"{_REFERENCE_PREFIX[method]}{uuid.uuid4().hex[:24]}"
        logger.info(
            "payment.captured",
            reference=reference,
            amount_minor=amount.amount,
            currency=amount.currency,
            method=method,
            payer_id=str(payer_id),
            simulated=True,
        )
        return reference
