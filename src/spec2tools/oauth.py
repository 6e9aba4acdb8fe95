"""OAuth2 authorization-code flow with dynamic client registration and PKCE.

The flow registers a public client, sends the user to the provider's
authorization page and waits for the redirect on a loopback listener, then
exchanges the code for an access token.
"""

from __future__ import annotations

import asyncio
import base64
import errno
import hashlib
import html
import logging
import re
import secrets
import socket
import webbrowser
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx
import uvicorn
from pydantic import BaseModel, ConfigDict
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse
from starlette.routing import Route

from .errors import AuthenticationError
from .models import OAuth2Auth


logger = logging.getLogger(__name__)

CALLBACK_HOST = "127.0.0.1"
CALLBACK_PORT = 54321
CALLBACK_PATH = "/callback"
CALLBACK_TIMEOUT_SECONDS = 300
CLIENT_NAME = "spec2tools"


class ClientRegistration(BaseModel):
    model_config = ConfigDict(extra="ignore")

    client_id: str
    client_secret: Optional[str] = None


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "bearer"
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str


def _urlsafe_b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_pkce() -> PKCEPair:
    verifier = _urlsafe_b64(secrets.token_bytes(32))
    challenge = _urlsafe_b64(hashlib.sha256(verifier.encode("ascii")).digest())
    return PKCEPair(verifier=verifier, challenge=challenge)


def generate_state() -> str:
    return secrets.token_urlsafe(16)


def registration_url(token_url: str) -> str:
    return re.sub(r"/token$", "/register", token_url)


def build_authorization_url(
    config: OAuth2Auth, client_id: str, redirect_uri: str, challenge: str, state: str
) -> str:
    parts = urlsplit(config.authorization_url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    params.extend(
        [
            ("response_type", "code"),
            ("client_id", client_id),
            ("redirect_uri", redirect_uri),
            ("code_challenge", challenge),
            ("code_challenge_method", "S256"),
        ]
    )
    if config.scopes:
        params.append(("scope", " ".join(config.scopes)))
    params.append(("state", state))
    return urlunsplit(parts._replace(query=urlencode(params, quote_via=quote)))


def _page(title: str, message: str) -> HTMLResponse:
    return HTMLResponse(
        "<html><body>"
        f"<h1>{html.escape(title)}</h1>"
        f"<p>{html.escape(message)}</p>"
        "<p>You can close this window.</p>"
        "</body></html>"
    )


class OAuthCallbackListener:
    """Single-use loopback HTTP listener for the authorization redirect."""

    def __init__(
        self,
        host: str = CALLBACK_HOST,
        port: int = CALLBACK_PORT,
        path: str = CALLBACK_PATH,
        expected_state: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.path = path
        self.expected_state = expected_state
        self._result: Optional[asyncio.Future[str]] = None

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"

    async def wait_for_code(self, on_ready: Callable[[], None], timeout: float) -> str:
        """Serve the callback route until one redirect arrives or ``timeout`` passes.

        ``on_ready`` runs once the port is bound, which is when the browser
        can safely be sent to the provider.
        """
        sock = self._bind()
        self._result = asyncio.get_running_loop().create_future()

        app = Starlette(routes=[Route(self.path, self._handle_callback, methods=["GET"])])
        config = uvicorn.Config(
            app, log_config=None, log_level="warning", access_log=False, lifespan="off"
        )
        server = uvicorn.Server(config)
        serve_task = asyncio.create_task(server.serve(sockets=[sock]))

        try:
            on_ready()
            done, _ = await asyncio.wait(
                {self._result, serve_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if self._result.done():
                return self._result.result()
            if serve_task in done:
                raise AuthenticationError("Callback listener stopped before a redirect arrived")
            raise AuthenticationError("Authentication timed out")
        finally:
            server.should_exit = True
            await asyncio.gather(serve_task, return_exceptions=True)
            if not self._result.done():
                self._result.cancel()
            if sock.fileno() != -1:
                sock.close()
            logger.debug("OAuth callback listener on port %s closed", self.port)

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((self.host, self.port))
            sock.listen()
        except OSError as exc:
            sock.close()
            if exc.errno == errno.EADDRINUSE:
                raise AuthenticationError(
                    f"Port {self.port} is already in use. Please free the port and try again."
                ) from exc
            raise AuthenticationError(str(exc)) from exc
        return sock

    async def _handle_callback(self, request: Request) -> HTMLResponse:
        result = self._result
        if result is None or result.done():
            return _page("Authentication Already Handled", "This sign-in attempt is finished.")

        params = request.query_params
        error = params.get("error")
        if error:
            result.set_exception(AuthenticationError(error))
            return _page("Authentication Failed", f"Error: {error}")

        if self.expected_state is not None and params.get("state") != self.expected_state:
            result.set_exception(AuthenticationError("State mismatch in authorization callback"))
            return _page("Authentication Failed", "Invalid state parameter.")

        code = params.get("code")
        if not code:
            result.set_exception(AuthenticationError("No authorization code received"))
            return _page("Authentication Failed", "No authorization code received.")

        result.set_result(code)
        return _page("Authentication Successful!", "You can return to the application.")


class OAuthFlow:
    def __init__(
        self,
        config: OAuth2Auth,
        *,
        host: str = CALLBACK_HOST,
        port: int = CALLBACK_PORT,
        path: str = CALLBACK_PATH,
        timeout_seconds: float = CALLBACK_TIMEOUT_SECONDS,
        http_timeout_seconds: float = 30,
        open_browser: Callable[[str], bool] = webbrowser.open,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.host = host
        self.port = port
        self.path = path
        self.timeout_seconds = timeout_seconds
        self.http_timeout_seconds = http_timeout_seconds
        self.open_browser = open_browser
        self.transport = transport
        self.registration: Optional[ClientRegistration] = None
        self.code_verifier: Optional[str] = None

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"

    async def run(self) -> TokenResponse:
        registration = await self.register_client()

        pkce = generate_pkce()
        self.code_verifier = pkce.verifier
        state = generate_state()
        authorization_url = build_authorization_url(
            self.config, registration.client_id, self.redirect_uri, pkce.challenge, state
        )

        listener = OAuthCallbackListener(self.host, self.port, self.path, expected_state=state)
        code = await listener.wait_for_code(
            lambda: self._open_browser(authorization_url), self.timeout_seconds
        )
        return await self.exchange_code(code)

    async def register_client(self) -> ClientRegistration:
        url = registration_url(self.config.token_url)
        logger.info("Registering OAuth2 client at %s", url)
        payload = {
            "client_name": CLIENT_NAME,
            "redirect_uris": [self.redirect_uri],
            "grant_types": ["authorization_code"],
            "token_endpoint_auth_method": "none",
        }

        try:
            async with self._client() as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Client registration failed: {exc}") from exc

        if not response.is_success:
            raise AuthenticationError(
                f"Client registration failed: {response.status_code} {response.text}"
            )

        try:
            self.registration = ClientRegistration.model_validate(response.json())
        except ValueError as exc:
            raise AuthenticationError("Client registration returned an invalid response") from exc
        return self.registration

    async def exchange_code(self, code: str) -> TokenResponse:
        if not self.registration or not self.code_verifier:
            raise AuthenticationError("Client must be registered before exchanging a code")

        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.registration.client_id,
            "code_verifier": self.code_verifier,
        }
        # Public clients have no secret.
        if self.registration.client_secret:
            form["client_secret"] = self.registration.client_secret

        try:
            async with self._client() as client:
                response = await client.post(self.config.token_url, data=form)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Token exchange failed: {exc}") from exc

        if not response.is_success:
            raise AuthenticationError(
                f"Token exchange failed: {response.status_code} {response.text}"
            )

        try:
            return TokenResponse.model_validate(response.json())
        except ValueError as exc:
            raise AuthenticationError("Token endpoint returned an invalid response") from exc

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.http_timeout_seconds, transport=self.transport)

    def _open_browser(self, url: str) -> None:
        logger.info("Opening browser for authorization. If it does not open, visit: %s", url)
        try:
            opened = self.open_browser(url)
        except webbrowser.Error as exc:
            logger.warning("Could not open browser automatically: %s", exc)
            return
        if not opened:
            logger.warning("Could not open browser automatically. Visit: %s", url)
