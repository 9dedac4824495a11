from storefront.exceptions import IllegalTransition
from storefront.models.order import OrderStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CANCELLABLE = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if OrderStatus.CANCELLED in targets)


def allowed_targets(current: OrderStatus | str) -> frozenset[OrderStatus]:
    return ALLOWED_TRANSITIONS.get(OrderStatus(current), frozenset())


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    try:
        target = OrderStatus(target)
    except ValueError:
        return False
    return target in allowed_targets(current)


def is_terminal(status: OrderStatus | str) -> bool:
    return not allowed_targets(status)


def transition(current: OrderStatus | str, target: OrderStatus | str) -> OrderStatus:
    """Validate a move from ``current`` to ``target`` and return the new status."""
    if not can_transition(current, target):
        current_val = current.value if isinstance(current, OrderStatus) else current
        target_val = target.value if isinstance(target, OrderStatus) else target
        raise IllegalTransition(current_val, target_val)
    return OrderStatus(target)
