import uuid

import pytest

from shopwatch import errors, policy

GOV = uuid.uuid4()
OWNER = uuid.uuid4()
CUSTOMER = uuid.uuid4()
OTHER_GOV = uuid.uuid4()

ROLES = policy.StaticRoles(
    {GOV: "government", OTHER_GOV: "government", OWNER: "shop_owner", CUSTOMER: "customer"}
)


def principal(actor_id):
    return policy.Principal(id=actor_id, role=ROLES.role_of(actor_id))


def shop(status="pending"):
    return policy.Resource("shop", uuid.uuid4(), frozenset({OWNER}), status)


def test_default_deny_for_unknown_action():
    decision = policy.authorize(principal(GOV), "shop.teleport", shop(), ROLES)
    assert not decision
    assert decision.rule is None


def test_anonymous_reads_only_approved_shops():
    assert policy.authorize(policy.ANONYMOUS, "shop.read", shop("approved"), ROLES).rule == "public-read"
    assert not policy.authorize(policy.ANONYMOUS, "shop.read", shop("pending"), ROLES)
    assert policy.authorize(policy.ANONYMOUS, "review.read", policy.Resource("review"), ROLES)
    assert policy.authorize(policy.ANONYMOUS, "template.read", policy.Resource("template"), ROLES)


def test_government_role_actions():
    for action in ("shop.approve", "shop.reject", "shop.suspend", "shop.reinstate", "shop.warn"):
        assert policy.authorize(principal(GOV), action, shop(), ROLES).rule == "government-role"
    assert policy.authorize(principal(GOV), "document.approve", policy.Resource("document"), ROLES)


def test_customer_cannot_approve_shop():
    with pytest.raises(errors.AuthorizationError):
        policy.require(principal(CUSTOMER), "shop.approve", shop(), ROLES)


def test_owner_cannot_approve_own_shop():
    assert not policy.authorize(principal(OWNER), "shop.approve", shop(), ROLES)


def test_role_comes_from_directory_not_claim():
    forged = policy.Principal(id=CUSTOMER, role="government")
    assert not policy.authorize(forged, "shop.approve", shop(), ROLES)


def test_self_ownership_rule():
    own = shop()
    assert policy.authorize(principal(OWNER), "shop.update", own, ROLES).rule == "self-ownership"
    assert not policy.authorize(principal(CUSTOMER), "shop.update", own, ROLES)


def test_owner_role_required_to_register():
    assert policy.authorize(principal(OWNER), "shop.create", policy.Resource("shop"), ROLES)
    assert not policy.authorize(principal(CUSTOMER), "shop.create", policy.Resource("shop"), ROLES)


def test_customer_role_actions():
    assert policy.authorize(principal(CUSTOMER), "review.create", policy.Resource("review"), ROLES)
    assert policy.authorize(principal(CUSTOMER), "favorite.create", policy.Resource("favorite"), ROLES)
    assert not policy.authorize(principal(OWNER), "review.create", policy.Resource("review"), ROLES)


def test_only_assigned_inspector_completes():
    inspection = policy.Resource(
        "inspection", uuid.uuid4(), frozenset({OWNER, GOV}), "in_progress", inspector_id=GOV
    )
    assert policy.authorize(principal(GOV), "inspection.complete", inspection, ROLES).rule == "assigned-inspector"
    assert not policy.authorize(principal(OTHER_GOV), "inspection.complete", inspection, ROLES)
    assert not policy.authorize(principal(OWNER), "inspection.complete", inspection, ROLES)
    assert policy.authorize(principal(OWNER), "inspection.cancel", inspection, ROLES)


def test_service_identity_limited_to_system_writes():
    assert policy.authorize(policy.SERVICE, "compliance.recompute", shop(), ROLES).rule == "service"
    assert policy.authorize(policy.SERVICE, "notification.create", policy.Resource("notification"), ROLES)
    assert not policy.authorize(policy.SERVICE, "shop.approve", shop(), ROLES)
    assert not policy.authorize(principal(GOV), "compliance.recompute", shop(), ROLES)


def test_first_matching_rule_wins():
    rules = (
        policy.PolicyRule("first", frozenset({"shop.read"}), lambda a, r, roles: True),
        policy.PolicyRule("second", frozenset({"shop.read"}), lambda a, r, roles: True),
    )
    assert policy.authorize(policy.ANONYMOUS, "shop.read", shop(), ROLES, rules).rule == "first"


def test_role_lookup_does_not_consult_resource():
    calls = []

    class CountingRoles:
        def role_of(self, actor_id):
            calls.append(actor_id)
            return ROLES.role_of(actor_id)

    policy.authorize(principal(GOV), "shop.approve", shop(), CountingRoles())
    assert calls == [GOV]
