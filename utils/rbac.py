import logging
from typing import Iterable

from django.contrib.auth import get_user_model

from utils.exceptions import AuthorizationError

# Canonical role names
ROLE_USER = "user"
ROLE_SELLER = "seller"
ROLE_ADMIN = "admin"

logger = logging.getLogger(__name__)


def _fetch_user_from_db(user):
    """Fetch a fresh copy of the user from the DB with only the fields we need.

    Falls back to None if user is not authenticated or lookup fails.
    """
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    User = get_user_model()
    # Only load minimal fields required for RBAC checks
    return User.objects.only("id", "role", "is_superuser").filter(pk=getattr(user, "pk", None)).first()


def is_admin(user) -> bool:
    """Consistent admin check across the codebase, verified against the database."""
    db_user = _fetch_user_from_db(user)
    if not db_user:
        return False
    return bool(db_user.is_superuser or db_user.role == ROLE_ADMIN)


def is_seller(user) -> bool:
    """Seller check verified against the database. Admins count as sellers."""
    db_user = _fetch_user_from_db(user)
    if not db_user:
        return False
    return db_user.role == ROLE_SELLER or is_admin(user)


def has_role(user, role: str) -> bool:
    if role == ROLE_ADMIN:
        return is_admin(user)
    if role == ROLE_SELLER:
        return is_seller(user)
    db_user = _fetch_user_from_db(user)
    return getattr(db_user, "role", None) == role if db_user else False


def has_any_role(user, roles: Iterable[str]) -> bool:
    return any(has_role(user, r) for r in roles)


def require_role(user, roles: Iterable[str]):
    """Raise AuthorizationError unless the user has one of the roles."""
    roles = list(roles)
    if not has_any_role(user, roles):
        logger.warning(
            "RBAC denial: user_id=%s required=%s",
            getattr(user, "id", None),
            roles,
        )
        raise AuthorizationError("Insufficient role to access this resource.")


def require_admin(user):
    require_role(user, [ROLE_ADMIN])


# Order party checks
def is_order_buyer(order, user) -> bool:
    return user is not None and order.buyer_id == getattr(user, "pk", None)


def is_order_seller(order, user) -> bool:
    if user is None:
        return False
    return order.store.owner_id == getattr(user, "pk", None)


def require_order_party(order, user):
    """Buyer, store owner or admin may see an order."""
    if is_order_buyer(order, user) or is_order_seller(order, user) or is_admin(user):
        return
    logger.warning("RBAC denial: user_id=%s order_id=%s", getattr(user, "id", None), order.pk)
    raise AuthorizationError("You do not have permission to access this order.")
