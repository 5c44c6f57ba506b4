from fastapi import FastAPI, HTTPException, WebSocket, Response, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from uuid import UUID
import logging
import os
import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from starlette.websockets import WebSocketDisconnect
from . import errors, models, policy, pubsub
from .auth import get_current_actor, get_optional_actor, resolve_actor
from .database import SessionLocal
from .routes import (
    profiles,
    shops,
    documents,
    inspections,
    reviews,
    notifications,
    compliance,
    audit,
    functions,
)

logger = logging.getLogger(__name__)

dsn = os.getenv("SENTRY_DSN")
if dsn:
    sentry_sdk.init(dsn=dsn, integrations=[FastApiIntegration()])

REQUEST_COUNT = Counter("request_count", "Total requests", ["method", "endpoint"])
REQUEST_LATENCY = Histogram(
    "request_latency_seconds", "Request latency", ["endpoint"]
)
COMMAND_ERRORS = Counter("command_errors", "Rejected commands", ["code"])

app = FastAPI(title="Shopwatch API")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_remote_address, default_limits=[os.getenv("APP_RATE_LIMIT", "120/minute")])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, lambda r, e: Response("Too Many Requests", status_code=429))
if os.getenv("TESTING") != "1":
    app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(errors.ShopwatchError)
async def handle_command_error(request: Request, exc: errors.ShopwatchError):
    COMMAND_ERRORS.labels(exc.code).inc()
    headers = {}
    if isinstance(exc, errors.RateLimitError):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
        headers=headers,
    )


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    endpoint = request.url.path
    REQUEST_COUNT.labels(request.method, endpoint).inc()
    REQUEST_LATENCY.labels(endpoint).observe(time.time() - start)
    return response

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

app.include_router(profiles.router)
app.include_router(shops.router)
app.include_router(documents.router)
app.include_router(inspections.router)
app.include_router(reviews.router)
app.include_router(reviews.favorites_router)
app.include_router(notifications.router)
app.include_router(compliance.router)
app.include_router(audit.router)
app.include_router(functions.router)


def audit_routes():
    from fastapi.routing import APIRoute

    resolvers = {get_current_actor, get_optional_actor}
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path.startswith("/api"):
            calls = {dep.call for dep in route.dependant.dependencies}
            if not calls & resolvers:
                raise RuntimeError(f"Route {route.path} does not resolve the caller's identity")


audit_routes()


async def _relay(websocket: WebSocket, channel: str) -> None:
    async with pubsub.subscription(channel) as messages:
        await websocket.accept()
        try:
            async for data in messages:
                await websocket.send_text(data)
        except WebSocketDisconnect:
            logger.debug("feed client left %s", channel)


def _feed_caller(websocket: WebSocket, db) -> policy.Principal | None:
    try:
        return resolve_actor(
            db,
            websocket.headers.get("x-actor-id") or websocket.query_params.get("actor_id"),
            websocket.headers.get("x-actor-role") or websocket.query_params.get("actor_role"),
        )
    except (HTTPException, errors.ShopwatchError):
        return None


def _may_watch(websocket: WebSocket, resource_for) -> bool:
    """Subscribing needs shop.read on the watched shop."""

    db = SessionLocal()
    try:
        actor = _feed_caller(websocket, db)
        if actor is None:
            return False
        resource = resource_for(db)
        if resource is None:
            return False
        return bool(policy.authorize(actor, "shop.read", resource, policy.RoleDirectory(db)))
    finally:
        db.close()


def _shop_resource(shop_id: UUID):
    def load(db):
        shop = db.get(models.Shop, shop_id)
        return policy.describe(shop) if shop is not None else None

    return load


@app.websocket("/ws/shops/owner/{owner_id}")
async def owner_feed(websocket: WebSocket, owner_id: UUID):
    # every shop the owner holds, whatever its status
    if not _may_watch(websocket, lambda db: policy.Resource("shop", owner_ids=frozenset({owner_id}))):
        await websocket.close(code=4403)
        return
    await _relay(websocket, pubsub.owner_channel(owner_id))


@app.websocket("/ws/shops/{shop_id}")
async def shop_feed(websocket: WebSocket, shop_id: UUID):
    if not _may_watch(websocket, _shop_resource(shop_id)):
        await websocket.close(code=4403)
        return
    await _relay(websocket, pubsub.shop_channel(shop_id))


@app.websocket("/ws/notifications/{user_id}")
async def notification_feed(websocket: WebSocket, user_id: UUID):
    claimed = websocket.headers.get("x-actor-id") or websocket.query_params.get("actor_id")
    try:
        allowed = claimed is not None and UUID(claimed) == user_id
    except ValueError:
        allowed = False
    if not allowed:
        await websocket.close(code=4403)
        return
    await _relay(websocket, pubsub.notification_channel(user_id))
