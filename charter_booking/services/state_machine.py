"""
Legal quote/booking transitions.
"""
from typing import Dict, FrozenSet

from ..models import BookingStatus


ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.APPROVED,
        BookingStatus.REJECTED,
        BookingStatus.EXPIRED,
    }),
    # APPROVED -> APPROVED is the resend-with-new-price self-loop
    BookingStatus.APPROVED: frozenset({
        BookingStatus.APPROVED,
        BookingStatus.PAID,
        BookingStatus.REJECTED,
        BookingStatus.EXPIRED,
    }),
    BookingStatus.PAID: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.EXPIRED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

# Statuses whose seats count against a flight's inventory
HOLDING_STATUSES: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.PENDING,
    BookingStatus.APPROVED,
    BookingStatus.PAID,
})


def sources_for(target: BookingStatus) -> FrozenSet[BookingStatus]:
    """Statuses from which `target` may be entered."""
    return frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if target in targets)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def releases_seats(current: BookingStatus, target: BookingStatus) -> bool:
    """Whether leaving `current` for `target` hands seats back to inventory."""
    return current in HOLDING_STATUSES and target not in HOLDING_STATUSES
