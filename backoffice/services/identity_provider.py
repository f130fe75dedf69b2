"""
OAuth identity provider client.

Authorization-code flow against a generic OAuth2 issuer (Kinde-style
endpoints): authorize URL, token exchange, user profile and token revocation.
"""

from urllib.parse import urlencode

import httpx
from structlog import get_logger

from backoffice.models.domain import OAuthToken, OAuthUser

logger = get_logger(__name__)


class IdentityProviderClient:
    """OAuth2 client for the configured identity provider."""

    def __init__(
        self,
        issuer: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._http_client = http_client

    @property
    def auth_url(self) -> str:
        return f"{self.issuer}/oauth2/auth"

    @property
    def token_url(self) -> str:
        return f"{self.issuer}/oauth2/token"

    @property
    def user_profile_url(self) -> str:
        return f"{self.issuer}/oauth2/v2/user_profile"

    @property
    def revoke_url(self) -> str:
        return f"{self.issuer}/oauth2/revoke"

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        """Get OAuth authorization URL."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "openid profile email offline",
            "state": state,
        }
        return f"{self.auth_url}?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str, redirect_uri: str) -> OAuthToken:
        """Exchange authorization code for access token."""
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }

        try:
            response = await self.http_client.post(self.token_url, data=data)
            response.raise_for_status()
            token_data = response.json()

            return OAuthToken(
                access_token=token_data["access_token"],
                token_type=token_data.get("token_type", "Bearer"),
                expires_in=token_data.get("expires_in"),
                refresh_token=token_data.get("refresh_token"),
            )

        except httpx.HTTPStatusError as e:
            logger.error(
                "token_exchange_failed", status=e.response.status_code, text=e.response.text
            )
            raise ValueError(f"Failed to exchange code: {e.response.status_code}") from e
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("token_exchange_error", error=str(e))
            raise ValueError("Failed to exchange authorization code") from e

    async def get_user_profile(self, access_token: str) -> OAuthUser:
        """
        Get the user profile for an access token.

        A successful response is the provider's confirmation that the token
        is valid.
        """
        try:
            response = await self.http_client.get(
                self.user_profile_url, headers={"Authorization": f"Bearer {access_token}"}
            )
            response.raise_for_status()
            profile = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("user_profile_fetch_failed", status=e.response.status_code)
            raise ValueError(f"Failed to get user profile: {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("user_profile_error", error=str(e))
            raise ValueError("Failed to reach identity provider") from e

        email = profile.get("preferred_email") or profile.get("email")
        user_id = profile.get("id") or profile.get("sub")
        if not email or not user_id:
            raise ValueError("Identity provider profile is missing id or email")

        name = " ".join(
            part for part in (profile.get("first_name"), profile.get("last_name")) if part
        )
        return OAuthUser(id=str(user_id), email=email.lower(), name=name or profile.get("name"))

    async def revoke_token(self, token: str) -> bool:
        """Revoke a refresh token. Failures are logged and reported as False."""
        try:
            response = await self.http_client.post(
                self.revoke_url,
                data={
                    "token": token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("token_revoke_failed", error=str(e))
            return False
        return True

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
