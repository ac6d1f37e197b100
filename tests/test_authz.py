import pytest

from bookstore_core.authz import Actor, Capability, Role, authorize, require
from bookstore_core.errors import PermissionDenied


@pytest.mark.parametrize(
    ("role", "capability", "allowed"),
    [
        (Role.CUSTOMER, Capability.ORDERS_PLACE, True),
        (Role.CUSTOMER, Capability.INVENTORY_VIEW, False),
        (Role.WAREHOUSE, Capability.INVENTORY_TRANSFER, True),
        (Role.WAREHOUSE, Capability.PROMOTIONS_MANAGE, False),
        (Role.FINANCE, Capability.ORDERS_MANAGE, True),
        (Role.FINANCE, Capability.INVENTORY_UPDATE, False),
        (Role.ADMIN, Capability.PROMOTIONS_MANAGE, True),
    ],
)
def test_role_capabilities(role, capability, allowed) -> None:
    assert authorize(Actor(user_id="u", role=role), capability) is allowed


def test_require_names_missing_capability() -> None:
    with pytest.raises(PermissionDenied) as excinfo:
        require(Actor(user_id="u"), Capability.CATALOG_MANAGE)
    assert excinfo.value.details == {"capability": "catalog.manage"}


def test_system_actor_is_admin() -> None:
    assert Actor.system().role is Role.ADMIN
