from dataclasses import dataclass, field

from fastapi import Request

# Capabilities a caller may hold. Customers hold none and act on their own orders.
MANAGE_ORDERS = "orders:manage"
CANCEL_ANY_ORDER = "orders:cancel_any"
MANAGE_CATALOG = "catalog:manage"
MANAGE_INVENTORY = "inventory:manage"

ACTOR_HEADER = "X-Actor-Id"
CAPABILITIES_HEADER = "X-Actor-Capabilities"


@dataclass(frozen=True)
class Actor:
    id: str
    capabilities: frozenset[str] = field(default_factory=frozenset)

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


class HeaderIdentityProvider:
    """Reads the caller from headers set by the upstream auth gateway.

    Only used to stamp audit fields and pick the capability set; tokens are
    verified before requests reach this service.
    """

    def current_actor(self, request: Request) -> Actor | None:
        actor_id = request.headers.get(ACTOR_HEADER, "").strip()
        if not actor_id:
            return None
        raw = request.headers.get(CAPABILITIES_HEADER, "")
        capabilities = frozenset(c.strip() for c in raw.split(",") if c.strip())
        return Actor(id=actor_id, capabilities=capabilities)
