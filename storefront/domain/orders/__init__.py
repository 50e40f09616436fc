from storefront.domain.orders.event_log import (
    MAX_MESSAGE_LENGTH,
    OrderEventKind,
    OrderEventLog,
    OrderEventView,
    add_note,
)
from storefront.domain.orders.state_machine import (
    TransitionResult,
    request_transition,
    transition_with_retry,
)
from storefront.domain.orders.status import (
    INITIAL_STATUS,
    TRANSITIONS,
    OrderStatus,
    can_transition,
    is_terminal,
    next_statuses,
    parse_status,
)

__all__ = [
    "INITIAL_STATUS",
    "MAX_MESSAGE_LENGTH",
    "OrderEventKind",
    "OrderEventLog",
    "OrderEventView",
    "OrderStatus",
    "TRANSITIONS",
    "TransitionResult",
    "add_note",
    "can_transition",
    "is_terminal",
    "next_statuses",
    "parse_status",
    "request_transition",
    "transition_with_retry",
]
