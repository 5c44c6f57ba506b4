from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from . import errors, models

# purpose: decide whether an actor may perform an action on a resource
# status: active
# inputs: resolved principal, action key, resource description, role lookup capability
# outputs: Decision naming the matching rule; deny when nothing matches


SERVICE_ACTOR_ID = UUID("00000000-0000-0000-0000-00000000f00d")


@dataclass(frozen=True)
class Principal:
    """Identity and role claim resolved by the upstream identity provider."""

    id: UUID | None
    role: str | None = None
    is_service: bool = False

    @property
    def is_anonymous(self) -> bool:
        return self.id is None


ANONYMOUS = Principal(id=None)
SERVICE = Principal(id=SERVICE_ACTOR_ID, role="service", is_service=True)


@dataclass(frozen=True)
class Resource:
    """Policy-relevant projection of an entity."""

    kind: str
    id: UUID | None = None
    owner_ids: frozenset[UUID] = field(default_factory=frozenset)
    status: str | None = None
    inspector_id: UUID | None = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    rule: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


class RoleLookup(Protocol):
    def role_of(self, actor_id: UUID) -> str | None: ...


class RoleDirectory:
    """Resolve roles from the profile table.

    Role rules consult this directory instead of the table being protected,
    so evaluating a rule never recurses into the rule set.
    """

    def __init__(self, db: Session) -> None:
        self._db = db
        self._cache: dict[UUID, str | None] = {}

    def role_of(self, actor_id: UUID) -> str | None:
        if actor_id not in self._cache:
            role = (
                self._db.query(models.Actor.role)
                .filter(models.Actor.id == actor_id)
                .scalar()
            )
            self._cache[actor_id] = role
        return self._cache[actor_id]


class StaticRoles:
    """In-memory role lookup for callers that already hold the roles."""

    def __init__(self, roles: dict[UUID, str]) -> None:
        self._roles = dict(roles)

    def role_of(self, actor_id: UUID) -> str | None:
        return self._roles.get(actor_id)


# actions writable only by the internal service identity
SERVICE_ACTIONS = frozenset(
    {
        "compliance.recompute",
        "history.create",
        "notification.create",
        "notification.log",
        "document.expire",
        "document.warn_expiry",
        "audit.create",
    }
)

SERVICE_READS = frozenset(
    {"shop.read", "document.read", "inspection.read", "history.read", "compliance.compute"}
)

PUBLIC_READ_ACTIONS = frozenset({"review.read", "template.read"})

INSPECTOR_ACTIONS = frozenset({"inspection.start", "inspection.complete"})

GOVERNMENT_ACTIONS = frozenset(
    {
        "shop.read",
        "shop.approve",
        "shop.reject",
        "shop.suspend",
        "shop.reinstate",
        "shop.warn",
        "document.read",
        "document.approve",
        "document.reject",
        "inspection.read",
        "inspection.schedule",
        "history.read",
        "compliance.compute",
        "audit.read",
        "notification.send",
    }
)

CUSTOMER_ACTIONS = frozenset({"review.create", "favorite.create"})

SHOP_OWNER_ACTIONS = frozenset({"shop.create"})

OWNER_ACTIONS = frozenset(
    {
        "shop.read",
        "shop.update",
        "shop.delete",
        "document.read",
        "document.create",
        "inspection.read",
        "inspection.cancel",
        "review.update",
        "review.delete",
        "favorite.read",
        "favorite.delete",
        "notification.read",
        "notification.update",
        "notification.delete",
        "history.read",
        "compliance.compute",
    }
)


def _is_service(actor: Principal, resource: Resource, roles: RoleLookup) -> bool:
    return actor.is_service


def _is_public(actor: Principal, resource: Resource, roles: RoleLookup) -> bool:
    return True


def _is_approved_shop(actor: Principal, resource: Resource, roles: RoleLookup) -> bool:
    return resource.kind == "shop" and resource.status == "approved"


def _has_role(role: str) -> Callable[[Principal, Resource, RoleLookup], bool]:
    def predicate(actor: Principal, resource: Resource, roles: RoleLookup) -> bool:
        if actor.id is None or actor.is_service:
            return False
        return roles.role_of(actor.id) == role

    predicate.__name__ = f"has_role_{role}"
    return predicate


def _is_assigned_inspector(actor: Principal, resource: Resource, roles: RoleLookup) -> bool:
    if actor.id is None or resource.inspector_id != actor.id:
        return False
    return roles.role_of(actor.id) == "government"


def _is_owner(actor: Principal, resource: Resource, roles: RoleLookup) -> bool:
    return actor.id is not None and actor.id in resource.owner_ids


@dataclass(frozen=True)
class PolicyRule:
    name: str
    actions: frozenset[str]
    when: Callable[[Principal, Resource, RoleLookup], bool]


# evaluated in order; first allow wins
RULES: tuple[PolicyRule, ...] = (
    PolicyRule("service", SERVICE_ACTIONS | SERVICE_READS, _is_service),
    PolicyRule("public-read", PUBLIC_READ_ACTIONS, _is_public),
    PolicyRule("public-read", frozenset({"shop.read"}), _is_approved_shop),
    PolicyRule("assigned-inspector", INSPECTOR_ACTIONS, _is_assigned_inspector),
    PolicyRule("government-role", GOVERNMENT_ACTIONS, _has_role("government")),
    PolicyRule("customer-role", CUSTOMER_ACTIONS, _has_role("customer")),
    PolicyRule("shop-owner-role", SHOP_OWNER_ACTIONS, _has_role("shop_owner")),
    PolicyRule("self-ownership", OWNER_ACTIONS, _is_owner),
)


def authorize(
    actor: Principal,
    action: str,
    resource: Resource,
    roles: RoleLookup,
    rules: tuple[PolicyRule, ...] = RULES,
) -> Decision:
    """Return the first matching allow rule, or deny."""

    for rule in rules:
        if action in rule.actions and rule.when(actor, resource, roles):
            return Decision(allowed=True, rule=rule.name)
    return Decision(allowed=False)


def require(actor: Principal, action: str, resource: Resource, roles: RoleLookup) -> Decision:
    decision = authorize(actor, action, resource, roles)
    if not decision:
        raise errors.AuthorizationError(f"not permitted to {action.replace('.', ' ')}")
    return decision


def describe(entity) -> Resource:
    """Project an ORM entity onto the fields the rules read."""

    if isinstance(entity, models.Shop):
        return Resource("shop", entity.id, frozenset({entity.owner_id}), entity.status)
    if isinstance(entity, models.Document):
        return Resource("document", entity.id, frozenset({entity.shop.owner_id}), entity.status)
    if isinstance(entity, models.Inspection):
        owners = frozenset({entity.shop.owner_id, entity.inspector_id})
        return Resource("inspection", entity.id, owners, entity.status, entity.inspector_id)
    if isinstance(entity, (models.Review, models.Favorite, models.Notification)):
        kind = entity.__tablename__.rstrip("s")
        return Resource(kind, entity.id, frozenset({entity.user_id}))
    if isinstance(entity, models.NotificationTemplate):
        return Resource("template", entity.id)
    raise TypeError(f"no policy projection for {type(entity).__name__}")
