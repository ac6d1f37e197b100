"""Authorization: one decision point for every operation.

Authentication lives upstream; by the time a request reaches the core the
caller is an :class:`Actor` with a user id and a role.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .errors import PermissionDenied


class Role(str, enum.Enum):
    CUSTOMER = "customer"
    WAREHOUSE = "warehouse"
    FINANCE = "finance"
    ADMIN = "admin"


class Capability(str, enum.Enum):
    CART_USE = "cart.use"
    ORDERS_PLACE = "orders.place"
    ORDERS_CANCEL_OWN = "orders.cancel_own"
    ORDERS_MANAGE = "orders.manage"
    CATALOG_MANAGE = "catalog.manage"
    INVENTORY_VIEW = "inventory.view"
    INVENTORY_UPDATE = "inventory.update"
    INVENTORY_TRANSFER = "inventory.transfer"
    PROMOTIONS_MANAGE = "promotions.manage"


_SHOPPER = frozenset({Capability.CART_USE, Capability.ORDERS_PLACE, Capability.ORDERS_CANCEL_OWN})

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.CUSTOMER: _SHOPPER,
    Role.WAREHOUSE: _SHOPPER
    | {
        Capability.INVENTORY_VIEW,
        Capability.INVENTORY_UPDATE,
        Capability.INVENTORY_TRANSFER,
        Capability.CATALOG_MANAGE,
    },
    Role.FINANCE: _SHOPPER | {Capability.ORDERS_MANAGE, Capability.PROMOTIONS_MANAGE, Capability.INVENTORY_VIEW},
    Role.ADMIN: frozenset(Capability),
}


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: Role = Role.CUSTOMER

    @classmethod
    def system(cls) -> "Actor":
        """Actor used by command line tooling."""

        return cls(user_id="system", role=Role.ADMIN)


def authorize(actor: Actor, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(actor.role, frozenset())


def require(actor: Actor, capability: Capability) -> None:
    if not authorize(actor, capability):
        raise PermissionDenied(capability.value)
