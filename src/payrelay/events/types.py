"""Inbound webhook event kinds.

Learn: The upstream processor sends many event types; we act on exactly
one. Modelling them as a closed enum with an explicit UNRECOGNIZED member
means the relay dispatches on a value it can exhaustively match instead of
comparing strings all over the place. Adding a kind = adding a member here
plus a branch in RelayService.
"""

import enum


class EventKind(str, enum.Enum):
    TRANSACTION_COMPLETED = "transaction.completed"
    UNRECOGNIZED = "unrecognized"


def parse_event_kind(event_type: object) -> EventKind:
    """Map a raw `event_type` value to an EventKind (never raises)."""
    if not isinstance(event_type, str) or event_type == EventKind.UNRECOGNIZED.value:
        return EventKind.UNRECOGNIZED
    try:
        return EventKind(event_type)
    except ValueError:
        return EventKind.UNRECOGNIZED
