"""Shared fixtures: sample OpenAPI documents and a recording HTTP transport."""

import copy
import socket
from typing import Callable, List, Optional

import httpx
import pytest

USERS_SPEC = {
    "openapi": "3.0.3",
    "info": {"title": "Users API", "version": "1.0.0"},
    "servers": [{"url": "https://api.example.com/"}],
    "paths": {
        "/users": {
            "get": {
                "operationId": "listUsers",
                "summary": "List users",
                "parameters": [
                    {"name": "limit", "in": "query", "required": False, "schema": {"type": "integer"}},
                ],
            },
            "post": {
                "operationId": "createUser",
                "summary": "Create a user",
                "requestBody": {
                    "content": {
                        "application/json": {
                            "schema": {
                                "type": "object",
                                "required": ["name"],
                                "properties": {
                                    "name": {"type": "string"},
                                    "email": {"type": "string"},
                                },
                            }
                        }
                    }
                },
            },
        },
        "/users/{id}": {
            "get": {
                "operationId": "getUser",
                "parameters": [
                    {"name": "id", "in": "path", "required": True, "schema": {"type": "integer"}},
                ],
            },
        },
    },
}


@pytest.fixture
def users_spec():
    """A small spec with list, create and get operations and no auth."""
    return copy.deepcopy(USERS_SPEC)


@pytest.fixture
def api_key_spec():
    """Users spec with a global header API key and one public operation."""
    spec = copy.deepcopy(USERS_SPEC)
    spec["components"] = {
        "securitySchemes": {"ApiKey": {"type": "apiKey", "in": "header", "name": "X-API-Key"}}
    }
    spec["security"] = [{"ApiKey": []}]
    spec["paths"]["/health"] = {"get": {"operationId": "health", "security": []}}
    return spec


class Recorder:
    """Records every request and answers with ``responder``."""

    def __init__(self, responder: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: List[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, json={"ok": True}))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
