from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict
from uuid import UUID

import jwt
import requests
from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"


@dataclass(frozen=True)
class Identity:
    id: UUID
    email: str | None = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        for key in ("name", "full_name"):
            value = self.user_metadata.get(key)
            if value:
                return str(value)
        return self.email or UNKNOWN_USER

    @property
    def avatar_url(self) -> str | None:
        return self.user_metadata.get("avatar_url") or None


def _get_required_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Missing required environment variable: {name}",
        )
    return value


def decode_token(token: str) -> Dict[str, Any]:
    secret = _get_required_env("AUTH_JWT_SECRET")
    audience = os.environ.get("AUTH_JWT_AUDIENCE", "authenticated")
    issuer = os.environ.get("AUTH_JWT_ISSUER", "").strip()
    options: Dict[str, Any] = {"algorithms": ["HS256"], "audience": audience}
    if issuer:
        options["issuer"] = issuer
    return jwt.decode(token, secret, **options)


def identity_from_claims(claims: Dict[str, Any]) -> Identity:
    try:
        user_id = UUID(str(claims.get("sub")))
    except ValueError as exc:
        raise jwt.InvalidTokenError("Token subject is not a user id") from exc
    return Identity(
        id=user_id,
        email=claims.get("email"),
        user_metadata=dict(claims.get("user_metadata") or {}),
    )


def identity_from_token(token: str) -> Identity:
    return identity_from_claims(decode_token(token))


def bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.replace("Bearer ", "", 1).strip() or None


def require_user(request: Request) -> Identity:
    token = bearer_token(request.headers.get("Authorization", ""))
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    try:
        identity = identity_from_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {exc}",
        ) from exc
    request.state.user = identity
    return identity


def require_token(request: Request) -> str:
    require_user(request)
    return bearer_token(request.headers.get("Authorization", ""))


# identity provider (GoTrue compatible REST API)


def _identity_base_url() -> str:
    return _get_required_env("IDENTITY_BASE_URL").rstrip("/")


def _identity_timeout() -> float:
    return float(os.environ.get("IDENTITY_TIMEOUT_S", "10"))


def _identity_headers(access_token: str | None = None) -> Dict[str, str]:
    api_key = _get_required_env("IDENTITY_API_KEY")
    headers = {"apikey": api_key, "Content-Type": "application/json"}
    headers["Authorization"] = f"Bearer {access_token or api_key}"
    return headers


def _provider_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason
    if not isinstance(payload, dict):
        return response.text or response.reason
    for key in ("error_description", "msg", "message", "error"):
        if payload.get(key):
            return str(payload[key])
    return response.reason


def _call_provider(path: str, *, payload: Dict[str, Any] | None = None, access_token: str | None = None, params=None):
    url = f"{_identity_base_url()}{path}"
    try:
        response = requests.post(
            url,
            json=payload or {},
            params=params,
            headers=_identity_headers(access_token),
            timeout=_identity_timeout(),
        )
    except requests.RequestException as exc:
        logger.error("identity provider unreachable at %s: %s", path, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="identity_provider_unavailable") from exc
    return response


def _session_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    user = payload.get("user") or {}
    return {
        "access_token": payload.get("access_token"),
        "refresh_token": payload.get("refresh_token"),
        "expires_in": payload.get("expires_in"),
        "user": {
            "id": user.get("id"),
            "email": user.get("email"),
            "created_at": user.get("created_at"),
        },
    }


def signup(email: str, password: str) -> Dict[str, Any]:
    response = _call_provider("/auth/v1/signup", payload={"email": email, "password": password})
    if response.status_code >= 400:
        logger.info("signup rejected for %s: %s", email, response.status_code)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_provider_message(response))
    payload = response.json()
    if "user" not in payload and payload.get("id"):
        # confirmation-pending signups come back as a bare user object
        payload = {"user": payload}
    return _session_payload(payload)


def login(email: str, password: str) -> Dict[str, Any]:
    response = _call_provider(
        "/auth/v1/token",
        payload={"email": email, "password": password},
        params={"grant_type": "password"},
    )
    if response.status_code >= 400:
        logger.info("login rejected for %s: %s", email, response.status_code)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return _session_payload(response.json())


def logout(access_token: str) -> Dict[str, Any]:
    response = _call_provider("/auth/v1/logout", access_token=access_token)
    if response.status_code >= 400:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_provider_message(response))
    return {"message": "Successfully logged out"}
