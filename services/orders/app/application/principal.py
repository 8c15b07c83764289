from dataclasses import dataclass, field
from typing import FrozenSet, Optional

PLACE_ORDER = "orders:place"
MANAGE_OWN_ORDERS = "orders:own"
ADMINISTER_ORDERS = "orders:admin"

CUSTOMER_CAPABILITIES = frozenset({PLACE_ORDER, MANAGE_OWN_ORDERS})
ADMIN_CAPABILITIES = frozenset({ADMINISTER_ORDERS})


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, whichever mechanism (bearer token or admin session) produced it."""

    user_id: Optional[int]
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    source: str = "bearer"

    def can(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def is_admin(self) -> bool:
        return self.can(ADMINISTER_ORDERS)

    def owns(self, user_id: Optional[int]) -> bool:
        return self.user_id is not None and self.user_id == user_id
