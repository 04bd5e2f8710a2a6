"""Fee apportionment for orders whose price must absorb third-party fees."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, Field

from gomu.errors import ValidationError
from gomu.models import AmountFee, BasisPointsFee, Fee

log = logging.getLogger(__name__)

BASIS_POINTS = 10_000


class FeeSchedule(BaseModel):
    """Concrete flat fees derived from a fee list and a trade amount."""

    fees: list[AmountFee] = Field(default_factory=list)
    total: int = 0

    def net_amount(self, base_amount: int | str) -> int:
        """Amount to embed in an order that settles as amount-plus-fees."""
        return int(base_amount) - self.total

    @property
    def recipients(self) -> list[str]:
        return list(dict.fromkeys(fee.recipient for fee in self.fees))


def compute_fees(fees: Sequence[Fee] | None, base_amount: int | str) -> FeeSchedule:
    """Turn flat and basis-point fees into flat amounts.

    Basis-point fees together take ``floor(base * sum(bps) / 10000)``. Each
    one is floored on its own and the rounding remainder goes to the last.
    Every individual fee, and their sum, must stay strictly below
    ``base_amount``.
    """
    base = int(base_amount)
    computed: list[AmountFee] = []
    proportional: list[int] = []
    combined_bps = 0

    for fee in fees or ():
        if isinstance(fee, AmountFee):
            if fee.amount >= base:
                raise ValidationError(
                    f"fee amount {fee.amount} must be less than the trade amount {base}"
                )
            computed.append(fee)
        elif isinstance(fee, BasisPointsFee):
            if not 1 <= fee.basis_points < BASIS_POINTS:
                raise ValidationError(
                    f"fee basis points must be between 1 and {BASIS_POINTS - 1}, "
                    f"got {fee.basis_points}"
                )
            amount = base * fee.basis_points // BASIS_POINTS
            proportional.append(len(computed))
            combined_bps += fee.basis_points
            computed.append(AmountFee(recipient=fee.recipient, amount=amount))
        else:
            raise ValidationError(f"unsupported fee: {fee!r}")

    if proportional:
        remainder = base * combined_bps // BASIS_POINTS - sum(
            computed[i].amount for i in proportional
        )
        if remainder:
            last = computed[proportional[-1]]
            computed[proportional[-1]] = AmountFee(
                recipient=last.recipient, amount=last.amount + remainder
            )

    total = sum(fee.amount for fee in computed)
    if computed and total >= base:
        raise ValidationError(f"total fees {total} must be less than the trade amount {base}")

    if computed:
        log.debug("Fee schedule for %d: %d fee(s) totalling %d", base, len(computed), total)
    return FeeSchedule(fees=computed, total=total)
