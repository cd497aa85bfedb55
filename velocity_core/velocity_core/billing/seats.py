"""Seat overage arithmetic.

An organization pays ``seat_price`` for every active seat beyond the
seats its plan includes.  Enterprise contracts carry their own included
seats and seat price on the organization record.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from velocity_core.plans.catalog import PlanTier, get_plan


@dataclass(frozen=True)
class SeatOverage:
    """Result of a seat overage calculation."""

    included: int
    active: int
    extra_seats: int
    seat_price: Decimal
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "included_seats": self.included,
            "active_seats": self.active,
            "additional_seats": self.extra_seats,
            "seat_price": str(self.seat_price),
            "amount": str(self.amount),
        }


def compute_seat_overage(active: int, included: int, seat_price: Decimal | int | float | str) -> SeatOverage:
    """Compute ``max(0, active - included) * seat_price``.

    Parameters
    ----------
    active:
        Seats currently in use.
    included:
        Seats covered by the subscription.
    seat_price:
        Price per additional seat.

    Returns
    -------
    SeatOverage
        ``amount`` is exactly zero whenever ``active <= included``.
    """
    if active < 0 or included < 0:
        raise ValueError("Seat counts must be non-negative")
    price = Decimal(str(seat_price))
    extra = max(0, active - included)
    return SeatOverage(
        included=included,
        active=active,
        extra_seats=extra,
        seat_price=price,
        amount=price * extra,
    )


def seat_terms(
    plan_id: str | PlanTier | None,
    *,
    custom_seats: int | None = None,
    custom_seat_price: Decimal | None = None,
) -> tuple[int, Decimal]:
    """Return ``(included_seats, seat_price)`` for a plan.

    Plans with custom seat terms (enterprise) fall back to the
    organization's contract values, or zero when none are recorded.
    """
    plan = get_plan(plan_id)
    included = plan.seats_included if plan.seats_included is not None else (custom_seats or 0)
    if plan.seat_price_usd is not None:
        price = plan.seat_price_usd
    else:
        price = Decimal(str(custom_seat_price)) if custom_seat_price is not None else Decimal("0")
    return included, price
