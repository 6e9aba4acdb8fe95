"""Session credential handling for the target API."""

from __future__ import annotations

import base64
import enum
import getpass
import logging
from typing import Callable, Dict, Optional

from .errors import AuthenticationError
from .models import ApiKeyAuth, AuthConfig, BasicAuth, BearerAuth, NoAuth, OAuth2Auth
from .oauth import OAuthFlow


logger = logging.getLogger(__name__)


class AuthState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class AuthManager:
    """Holds the single in-memory credential of a session.

    Every method taking an optional ``auth_config`` uses it in place of the
    session's global configuration, which is how per-operation security
    overrides are honoured.
    """

    def __init__(
        self,
        global_config: AuthConfig,
        *,
        prompt: Callable[[str], str] = input,
        secret_prompt: Callable[[str], str] = getpass.getpass,
        oauth_flow_factory: Callable[[OAuth2Auth], OAuthFlow] = OAuthFlow,
    ) -> None:
        self.global_config = global_config
        self.prompt = prompt
        self.secret_prompt = secret_prompt
        self.oauth_flow_factory = oauth_flow_factory
        self._state = AuthState.UNAUTHENTICATED
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def access_token(self) -> Optional[str]:
        if self._state is not AuthState.AUTHENTICATED:
            return None
        return self._access_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self._refresh_token

    def requires_auth(self, auth_config: Optional[AuthConfig] = None) -> bool:
        return not isinstance(self._effective(auth_config), NoAuth)

    def set_access_token(self, token: str) -> None:
        if not token:
            raise AuthenticationError("Access token must not be empty")
        self._access_token = token
        self._state = AuthState.AUTHENTICATED

    async def authenticate(self, auth_config: Optional[AuthConfig] = None) -> None:
        config = self._effective(auth_config)
        if isinstance(config, NoAuth):
            return

        previous = self._state
        self._state = AuthState.AUTHENTICATING
        logger.info("Authenticating with %s", config.type)
        try:
            if isinstance(config, OAuth2Auth):
                token = await self._oauth2(config)
            elif isinstance(config, ApiKeyAuth):
                token = self._require(
                    self._ask(self.secret_prompt, f"Enter your API key ({config.name}): "),
                    "API key is required",
                )
            elif isinstance(config, BearerAuth):
                token = self._require(
                    self._ask(self.secret_prompt, "Enter your Bearer token: "),
                    "Bearer token is required",
                )
            elif isinstance(config, BasicAuth):
                token = self._basic()
            else:
                raise AuthenticationError(f"Unsupported auth type: {config.type}")
        except BaseException:
            self._state = previous
            raise

        self._access_token = token
        self._state = AuthState.AUTHENTICATED
        logger.info("Authentication successful")

    def get_auth_headers(self, auth_config: Optional[AuthConfig] = None) -> Dict[str, str]:
        token = self.access_token
        if not token:
            return {}

        config = self._effective(auth_config)
        if isinstance(config, (OAuth2Auth, BearerAuth)):
            return {"Authorization": f"Bearer {token}"}
        if isinstance(config, BasicAuth):
            return {"Authorization": f"Basic {token}"}
        if isinstance(config, ApiKeyAuth) and config.location == "header":
            return {config.name: token}
        return {}

    def get_auth_query_params(self, auth_config: Optional[AuthConfig] = None) -> Dict[str, str]:
        token = self.access_token
        config = self._effective(auth_config)
        if token and isinstance(config, ApiKeyAuth) and config.location == "query":
            return {config.name: token}
        return {}

    def _effective(self, auth_config: Optional[AuthConfig]) -> AuthConfig:
        return auth_config if auth_config is not None else self.global_config

    async def _oauth2(self, config: OAuth2Auth) -> str:
        flow = self.oauth_flow_factory(config)
        tokens = await flow.run()
        self._refresh_token = tokens.refresh_token
        return tokens.access_token

    def _basic(self) -> str:
        username = self._ask(self.prompt, "Enter username: ").strip()
        password = self._ask(self.secret_prompt, "Enter password: ").strip()
        if not username or not password:
            raise AuthenticationError("Username and password are required for Basic auth")
        return base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")

    @staticmethod
    def _ask(read: Callable[[str], str], text: str) -> str:
        try:
            return read(text)
        except EOFError as exc:
            raise AuthenticationError("No input available for credential prompt") from exc

    @staticmethod
    def _require(value: str, message: str) -> str:
        value = (value or "").strip()
        if not value:
            raise AuthenticationError(message)
        return value
