"""Billing arithmetic: cycle windows and seat overage."""

from velocity_core.billing.cycle import CYCLE_LENGTH, CycleWindow, cycle_ended, default_usage_window, new_cycle_window
from velocity_core.billing.seats import SeatOverage, compute_seat_overage, seat_terms

__all__ = [
    "CYCLE_LENGTH",
    "CycleWindow",
    "SeatOverage",
    "compute_seat_overage",
    "cycle_ended",
    "default_usage_window",
    "new_cycle_window",
    "seat_terms",
]
