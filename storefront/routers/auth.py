"""Authentication API router."""
import hmac
import logging
import uuid
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Cookie, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from storefront.auth import Identity, verify_token
from storefront.config import Settings
from storefront.database import get_db
from storefront.dependencies import get_account_service, get_google_client, get_settings
from storefront.errors import IdentityProviderError, StoreError
from storefront.schemas import AuthResponse, LoginRequest, RegisterRequest, TokenResponse, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_MAX_AGE_SECONDS = 600


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    request: RegisterRequest,
    db: Session = Depends(get_db),
    account_service=Depends(get_account_service)
):
    """Create a password account and sign it in."""
    user, token = account_service.register(db, request.name, request.email, request.password)
    return AuthResponse(token=token, user=UserResponse.model_validate(user))


@router.post("/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    db: Session = Depends(get_db),
    account_service=Depends(get_account_service)
):
    """Authenticate with email and password and return a token."""
    user, token = account_service.login(db, request.email, request.password)
    return AuthResponse(token=token, user=UserResponse.model_validate(user))


@router.get("/google")
async def google_login(
    settings: Settings = Depends(get_settings),
    google_client=Depends(get_google_client)
):
    """Redirect to Google's consent page, remembering the state in a cookie."""
    state = str(uuid.uuid4())
    response = RedirectResponse(google_client.authorization_url(state), status_code=307)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=OAUTH_STATE_MAX_AGE_SECONDS,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )
    return response


@router.get("/google/callback")
async def google_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    oauth_state: Optional[str] = Cookie(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    google_client=Depends(get_google_client),
    account_service=Depends(get_account_service)
):
    """
    Finish the Google sign-in.

    Always redirects to the frontend: with the token on success, or to the
    error page with a reason code. The ``state`` parameter must match the
    cookie set by the login redirect.
    """
    if not state or not oauth_state or not hmac.compare_digest(state, oauth_state):
        return _auth_error_redirect(settings, "invalid_state")
    if not code:
        return _auth_error_redirect(settings, "missing_code")

    try:
        info = await google_client.exchange_code(code)
        _, token = account_service.google_login(db, info)
    except IdentityProviderError as e:
        return _auth_error_redirect(settings, e.reason)
    except StoreError as e:
        logger.error("Google sign-in failed", extra={"error": e.message})
        return _auth_error_redirect(settings, "create_failed")

    response = RedirectResponse(
        f"{settings.frontend_url}/auth/callback?{urlencode({'token': token})}",
        status_code=307,
    )
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


def _auth_error_redirect(settings: Settings, reason: str) -> RedirectResponse:
    logger.warning("Google sign-in redirecting with error", extra={"reason": reason})
    response = RedirectResponse(
        f"{settings.frontend_url}/auth/error?{urlencode({'message': reason})}",
        status_code=307,
    )
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


@router.get("/me", response_model=UserResponse)
async def me(
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    account_service=Depends(get_account_service)
):
    """Get the signed-in user."""
    return UserResponse.model_validate(account_service.get_user(db, identity))


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    account_service=Depends(get_account_service)
):
    """Issue a new token for the signed-in user."""
    return TokenResponse(token=account_service.refresh_token(db, identity))
