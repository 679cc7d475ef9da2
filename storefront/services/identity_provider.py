"""Google OAuth 2.0 client."""
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from storefront.config import Settings
from storefront.errors import IdentityProviderError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPES = ("email", "profile")


@dataclass(frozen=True)
class GoogleUserInfo:
    id: str
    email: str
    name: str
    picture: str = ""


class GoogleOAuthClient:
    """Client for the Google authorization-code flow."""

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings):
        self.http_client = http_client
        self.settings = settings

    def authorization_url(self, state: str) -> str:
        """URL the browser is sent to for consent."""
        params = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.google_redirect_url,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "access_type": "offline",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> GoogleUserInfo:
        """
        Exchange an authorization code for the user's Google profile.

        Args:
            code: Code from the OAuth callback

        Returns:
            Google account id, email, name and picture

        Raises:
            IdentityProviderError: With reason ``exchange_failed``,
                ``userinfo_failed`` or ``decode_failed``
        """
        # HTTPXClientInstrumentor already creates spans for HTTP calls
        try:
            token_response = await self.http_client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": self.settings.google_client_id,
                    "client_secret": self.settings.google_client_secret,
                    "redirect_uri": self.settings.google_redirect_url,
                    "grant_type": "authorization_code",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("Failed to reach Google token endpoint", extra={"error": str(e)})
            raise IdentityProviderError("exchange_failed", retryable=True)

        if token_response.status_code != 200:
            logger.warning("Google token exchange rejected", extra={
                "status_code": token_response.status_code,
                "body": token_response.text[:500]
            })
            raise IdentityProviderError("exchange_failed")

        try:
            access_token = token_response.json()["access_token"]
        except (ValueError, KeyError):
            logger.error("Google token response has no access token")
            raise IdentityProviderError("exchange_failed")

        try:
            userinfo_response = await self.http_client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error("Failed to fetch Google userinfo", extra={"error": str(e)})
            raise IdentityProviderError("userinfo_failed", retryable=True)

        if userinfo_response.status_code != 200:
            logger.warning("Google userinfo request rejected", extra={
                "status_code": userinfo_response.status_code
            })
            raise IdentityProviderError("userinfo_failed")

        try:
            body = userinfo_response.json()
            return GoogleUserInfo(
                id=str(body["id"]),
                email=body["email"],
                name=body.get("name") or body["email"].split("@")[0],
                picture=body.get("picture") or "",
            )
        except (ValueError, KeyError, TypeError):
            logger.error("Failed to decode Google userinfo")
            raise IdentityProviderError("decode_failed")
