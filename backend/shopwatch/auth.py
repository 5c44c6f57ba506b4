from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from . import policy
from .database import get_db
from .services import registry

# purpose: turn identity-provider headers into a policy principal
# status: active
# inputs: X-Actor-Id and X-Actor-Role headers set by the upstream identity provider
# outputs: policy.Principal; anonymous when no identity is presented


def resolve_actor(db: Session, actor_id: str | None, role: str | None) -> policy.Principal:
    if not actor_id:
        return policy.ANONYMOUS
    try:
        identity = UUID(actor_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    if not role or role == "service" or identity == policy.SERVICE_ACTOR_ID:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    profile = registry.ensure_actor(db, identity, role)
    return policy.Principal(id=profile.id, role=profile.role)


async def get_optional_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> policy.Principal:
    return resolve_actor(db, x_actor_id, x_actor_role)


async def get_current_actor(
    actor: policy.Principal = Depends(get_optional_actor),
) -> policy.Principal:
    if actor.is_anonymous:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return actor
