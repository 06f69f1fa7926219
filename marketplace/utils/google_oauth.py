import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ValidationError

from marketplace.config import settings
from marketplace.utils.errors import AppError

logger = logging.getLogger("marketplace.google")

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
SCOPE = "openid email profile"


class GoogleProfile(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    verified_email: bool = False


def generate_state() -> str:
    return secrets.token_hex(16)


def build_authorization_url(state: str) -> str:
    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": settings.GOOGLE_CALLBACK_URL,
        "response_type": "code",
        "scope": SCOPE,
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _client(client: Optional[httpx.Client]) -> httpx.Client:
    return client or httpx.Client(timeout=settings.GOOGLE_HTTP_TIMEOUT)


def exchange_code(code: str, client: Optional[httpx.Client] = None) -> dict:
    """Trade an authorization code for Google access / id tokens."""
    data = {
        "code": code,
        "client_id": settings.GOOGLE_CLIENT_ID,
        "client_secret": settings.GOOGLE_CLIENT_SECRET,
        "redirect_uri": settings.GOOGLE_CALLBACK_URL,
        "grant_type": "authorization_code",
    }
    http = _client(client)
    try:
        resp = http.post(TOKEN_URL, data=data)
    except httpx.HTTPError as e:
        logger.error("Google token exchange failed: %s", e)
        raise AppError.external_service("google", "Failed to exchange code for tokens")
    finally:
        if client is None:
            http.close()

    if resp.status_code != 200:
        logger.error("Google token exchange returned %s: %s", resp.status_code, resp.text)
        raise AppError.external_service("google", "Failed to exchange code for tokens")

    try:
        tokens = resp.json()
    except ValueError:
        logger.error("Google token response is not JSON: %s", resp.text)
        raise AppError.external_service("google", "Malformed token response")

    if not isinstance(tokens, dict) or "access_token" not in tokens:
        raise AppError.external_service("google", "Token response missing access_token")
    return tokens


def fetch_profile(access_token: str, client: Optional[httpx.Client] = None) -> GoogleProfile:
    http = _client(client)
    try:
        resp = http.get(USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
    except httpx.HTTPError as e:
        logger.error("Google userinfo request failed: %s", e)
        raise AppError.external_service("google", "Failed to get user info from Google")
    finally:
        if client is None:
            http.close()

    if resp.status_code != 200:
        logger.error("Google userinfo returned %s", resp.status_code)
        raise AppError.external_service("google", "Failed to get user info from Google")

    try:
        return GoogleProfile.model_validate(resp.json())
    except (ValueError, ValidationError) as e:
        logger.error("Google userinfo response is malformed: %s", e)
        raise AppError.external_service("google", "Malformed user info from Google")
