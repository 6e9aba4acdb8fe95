"""Internal models for auth configuration and tool definitions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, FrozenSet, Tuple, Type, Union

from pydantic import BaseModel


HTTP_METHODS: Tuple[str, ...] = ("GET", "POST", "PUT", "PATCH", "DELETE")


@dataclass(frozen=True)
class NoAuth:
    type: ClassVar[str] = "none"


@dataclass(frozen=True)
class ApiKeyAuth:
    type: ClassVar[str] = "apiKey"

    name: str
    location: str = "header"

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("apiKey auth requires a parameter name")
        if self.location not in {"header", "query"}:
            raise ValueError(f"apiKey location must be 'header' or 'query', got {self.location!r}")


@dataclass(frozen=True)
class BearerAuth:
    type: ClassVar[str] = "bearer"


@dataclass(frozen=True)
class BasicAuth:
    type: ClassVar[str] = "basic"


@dataclass(frozen=True)
class OAuth2Auth:
    type: ClassVar[str] = "oauth2"

    authorization_url: str
    token_url: str
    scopes: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.authorization_url or not self.token_url:
            raise ValueError("oauth2 auth requires both authorization_url and token_url")


AuthConfig = Union[NoAuth, ApiKeyAuth, BearerAuth, BasicAuth, OAuth2Auth]


@dataclass(frozen=True)
class ParameterPlacement:
    path_params: FrozenSet[str] = frozenset()
    query_params: FrozenSet[str] = frozenset()
    body_params: FrozenSet[str] = frozenset()

    def location_of(self, name: str) -> str:
        if name in self.path_params:
            return "path"
        if name in self.query_params:
            return "query"
        # Anything not recorded at parse time travels in the body.
        return "body"

    def all_params(self) -> FrozenSet[str]:
        return self.path_params | self.query_params | self.body_params


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_model: Type[BaseModel]
    method: str
    path: str
    auth_config: AuthConfig
    placement: ParameterPlacement

    def json_schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema(by_alias=True)
