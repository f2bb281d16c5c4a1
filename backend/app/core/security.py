from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import jwt
import requests
from fastapi import Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import PermissionDenied, Unauthenticated
from app.core.settings import settings
from app.models.profile import Profile
from app.services.cache import TTLCache
from app.services.credits_engine import is_admin


logger = logging.getLogger(__name__)

KNOWN_ROLES = {"customer", "contractor"}


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str
    is_admin: bool = False


def _normalize_role(value: object) -> str:
    role = str(value or "").strip().lower()
    return role if role in KNOWN_ROLES else ""


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise Unauthenticated("Missing Authorization Bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise Unauthenticated("Missing Authorization Bearer token")
    return token


def _decode_supabase_jwt(token: str) -> dict[str, Any]:
    supabase_url = (settings.supabase_url or "").strip().rstrip("/")
    if not supabase_url:
        raise Unauthenticated("Token verification is not configured")
    jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"
    issuer = settings.supabase_jwt_issuer or f"{supabase_url}/auth/v1"
    audience = settings.supabase_jwt_audience or "authenticated"

    try:
        jwks_client = jwt.PyJWKClient(jwks_url)
        signing_key = jwks_client.get_signing_key_from_jwt(token).key
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=["ES256", "RS256"],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "sub"]},
        )
        return dict(payload)
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid bearer token")


_SUPABASE_PROFILE_ROLE_CACHE = TTLCache(max_items=20000, ttl_s=60)


def _supabase_rest_profiles_role(
    *,
    supabase_url: str,
    user_id: str,
    api_key: str,
    bearer: str,
    timeout_s: float = 8,
) -> str | None:
    try:
        resp = requests.get(
            f"{supabase_url}/rest/v1/profiles",
            params={"select": "role", "id": f"eq.{user_id}"},
            headers={
                "apikey": api_key,
                "authorization": f"Bearer {bearer}",
                "accept": "application/json",
            },
            timeout=timeout_s,
        )
    except requests.RequestException:
        logger.warning("security.profile_role.unreachable user_id=%s", user_id)
        return None
    if resp.status_code != 200:
        return None
    rows = resp.json()
    if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
        return None
    return _normalize_role(rows[0].get("role")) or None


def _fetch_profile_role_cached(*, user_id: str, user_token: str) -> str | None:
    supabase_url = (settings.supabase_url or "").strip().rstrip("/")
    api_key = (settings.supabase_service_role_key or settings.supabase_anon_key or "").strip()
    if not supabase_url or not api_key:
        return None
    cache_key = f"supabase_profile_role:{user_id}"
    cached = _SUPABASE_PROFILE_ROLE_CACHE.get(cache_key)
    if isinstance(cached, str):
        return cached or None
    bearer = (settings.supabase_service_role_key or user_token or "").strip()
    role = _supabase_rest_profiles_role(supabase_url=supabase_url, user_id=user_id, api_key=api_key, bearer=bearer)
    if role:
        _SUPABASE_PROFILE_ROLE_CACHE.set(cache_key, role)
    return role


def _decide_role(*, db_role: str | None, claim_role: str | None, supabase_role: str | None) -> tuple[str, str]:
    """Pick the marketplace role for a caller and report where it came from.

    The local profile wins; otherwise the server-controlled ``app_metadata``
    claim, then the Supabase ``profiles`` row. Unknown values are ignored.
    """
    local = _normalize_role(db_role)
    if local:
        return (local, "db_profile")
    claimed = _normalize_role(claim_role)
    if claimed:
        return (claimed, "jwt_claim")
    remote = _normalize_role(supabase_role)
    if remote:
        return (remote, "supabase_profiles")
    return ("customer", "default")


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    token = _get_bearer_token(request)
    claims = _decode_supabase_jwt(token)
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("email") or "").strip()
    if not user_id:
        raise Unauthenticated("Invalid token")

    app_meta = claims.get("app_metadata") or {}
    if not isinstance(app_meta, dict):
        app_meta = {}
    claim_role = str(app_meta.get("role") or "").strip().lower()

    profile = db.get(Profile, user_id)
    remote_role: str | None = None
    if profile is None and not _normalize_role(claim_role):
        remote_role = _fetch_profile_role_cached(user_id=user_id, user_token=token)

    role, reason = _decide_role(
        db_role=(profile.role if profile else None),
        claim_role=claim_role,
        supabase_role=remote_role,
    )
    if profile is None:
        profile = Profile(id=user_id, email=email, role=role)
        db.add(profile)
        try:
            db.commit()
            logger.info("security.profile.created user_id=%s role=%s reason=%s", user_id, role, reason)
        except IntegrityError:
            # A concurrent first request created it.
            db.rollback()
            profile = db.get(Profile, user_id)
            if profile is None:
                raise Unauthenticated("Invalid token")
            role, reason = _decide_role(db_role=profile.role, claim_role=claim_role, supabase_role=None)

    return CurrentUser(
        id=profile.id,
        email=profile.email or email,
        role=role,
        is_admin=is_admin(db, user_id, email),
    )


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise PermissionDenied("Admin privileges required")
    return user
