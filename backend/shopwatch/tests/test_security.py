from shopwatch.main import app
from shopwatch.auth import get_current_actor, get_optional_actor

# readable without an identity; every other /api route requires one
PUBLIC_PATHS = {
    "/api/shops/",
    "/api/shops/{shop_id}",
    "/api/reviews/",
    "/api/notifications/templates",
}


def _resolvers(route):
    return {d.call for d in route.dependant.dependencies}


def test_all_routes_resolve_identity():
    for route in app.routes:
        path = getattr(route, 'path', '')
        if not path.startswith('/api'):
            continue
        if not hasattr(route, 'dependant'):
            continue
        deps = _resolvers(route)
        if path in PUBLIC_PATHS and "GET" in route.methods:
            assert get_optional_actor in deps, f"{path} does not resolve optional identity"
            continue
        assert get_current_actor in deps, f"{path} missing authentication"


def test_anonymous_writes_are_refused(client):
    assert client.post("/api/shops/", json={"name": "Ghost"}).status_code == 401
    assert client.post("/api/functions/compute-compliance", json={"shopId": "0" * 32}).status_code == 401


def test_public_templates(client):
    resp = client.get("/api/notifications/templates")
    assert resp.status_code == 200
