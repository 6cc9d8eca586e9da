"""Route tree for the HTTP gateway.

Routes are keyed by path segments. A segment is a literal (``token``), a
path parameter (``{name}``) or a greedy proxy (``{proxy+}``) that swallows
the remaining suffix. The tree starts as a draft and is sealed once it is
handed to the provisioning layer; a sealed tree never changes again.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Iterable

from .errors import DuplicateRoute, InvalidRoute, TreeSealed

DRAFT = "Draft"
SEALED = "Sealed"

PASSTHROUGH = "Passthrough"
CONVERT_TO_TEXT = "ConvertToText"
CONTENT_HANDLING = (PASSTHROUGH, CONVERT_TO_TEXT)

METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "ANY")

DEFAULT_IDENTITY_SOURCE = "method.request.header.Authorization"


@dataclass(frozen=True)
class HandlerRef:
    name: str


@dataclass(frozen=True)
class TokenAuthorizer:
    handler: HandlerRef
    identity_source: str = DEFAULT_IDENTITY_SOURCE

    @property
    def kind(self) -> str:
        return "token"


@dataclass(frozen=True)
class CognitoPoolAuthorizer:
    pool_id: str
    identity_source: str = DEFAULT_IDENTITY_SOURCE

    @property
    def kind(self) -> str:
        return "cognito"


class _Inherit:
    def __repr__(self) -> str:
        return "INHERIT"


INHERIT: Any = _Inherit()


@dataclass(frozen=True)
class Route:
    path: tuple[str, ...]
    method: str
    authorizer: TokenAuthorizer | CognitoPoolAuthorizer | None
    required_scopes: frozenset[str]
    content_handling: str
    integration_target: HandlerRef

    @property
    def path_str(self) -> str:
        return "/" + "/".join(self.path)

    @property
    def is_proxy(self) -> bool:
        return bool(self.path) and _is_proxy(self.path[-1])

    def to_json(self) -> dict[str, Any]:
        auth: dict[str, Any] | None = None
        if isinstance(self.authorizer, TokenAuthorizer):
            auth = {"type": "token", "handler": self.authorizer.handler.name}
        elif isinstance(self.authorizer, CognitoPoolAuthorizer):
            auth = {"type": "cognito", "poolId": self.authorizer.pool_id}
        return {
            "path": self.path_str,
            "method": self.method,
            "authorizer": auth,
            "requiredScopes": sorted(self.required_scopes),
            "contentHandling": self.content_handling,
            "target": self.integration_target.name,
        }


@dataclass
class RouteMatch:
    route: Route
    path_parameters: dict[str, str] = field(default_factory=dict)


def _is_proxy(segment: str) -> bool:
    return segment.startswith("{") and segment.endswith("+}")


def _is_param(segment: str) -> bool:
    return segment.startswith("{") and segment.endswith("}") and not _is_proxy(segment)


def _param_name(segment: str) -> str:
    return segment.strip("{}").rstrip("+")


def split_path(path: str | Iterable[str]) -> tuple[str, ...]:
    if isinstance(path, str):
        return tuple(part for part in path.split("/") if part)
    return tuple(part for part in path if part)


@dataclass
class _Node:
    segment: str
    children: dict[str, "_Node"] = field(default_factory=dict)
    methods: dict[str, Route] = field(default_factory=dict)

    def param_child(self) -> "_Node | None":
        for seg, child in self.children.items():
            if _is_param(seg):
                return child
        return None

    def proxy_child(self) -> "_Node | None":
        for seg, child in self.children.items():
            if _is_proxy(seg):
                return child
        return None


class RouteTree:
    def __init__(
        self,
        *,
        default_authorizer: TokenAuthorizer | CognitoPoolAuthorizer | None = None,
        binary_media_types: Iterable[str] = (),
    ) -> None:
        self.default_authorizer = default_authorizer
        self.binary_media_types = tuple(binary_media_types)
        self.state = DRAFT
        self._root = _Node(segment="")
        self._routes: list[Route] = []

    @property
    def sealed(self) -> bool:
        return self.state == SEALED

    def seal(self) -> "RouteTree":
        self.state = SEALED
        return self

    def routes(self) -> list[Route]:
        return list(self._routes)

    def authorizers(self) -> list[TokenAuthorizer | CognitoPoolAuthorizer]:
        seen: list[TokenAuthorizer | CognitoPoolAuthorizer] = []
        for route in self._routes:
            if route.authorizer is not None and route.authorizer not in seen:
                seen.append(route.authorizer)
        return seen

    def routing_table(self) -> list[dict[str, Any]]:
        return [route.to_json() for route in self._routes]

    def add_route(
        self,
        path: str | Iterable[str],
        method: str,
        target: HandlerRef,
        *,
        authorizer: Any = INHERIT,
        scopes: Iterable[str] = (),
        content_handling: str = PASSTHROUGH,
    ) -> Route:
        if self.sealed:
            raise TreeSealed()

        segments = split_path(path)
        verb = (method or "").strip().upper()
        if verb not in METHODS:
            raise InvalidRoute(f"unsupported method {method!r}")
        if content_handling not in CONTENT_HANDLING:
            raise InvalidRoute(f"unsupported content handling {content_handling!r}")
        for i, seg in enumerate(segments):
            if _is_proxy(seg) and i != len(segments) - 1:
                raise InvalidRoute(f"proxy segment {seg!r} must be the last path segment")
            if seg.startswith("{") != seg.endswith("}"):
                raise InvalidRoute(f"malformed path segment {seg!r}")

        resolved = self.default_authorizer if authorizer is INHERIT else authorizer
        # Scopes only mean something to identity-pool authorizers.
        required = (
            frozenset(s.strip() for s in scopes if s and s.strip())
            if isinstance(resolved, CognitoPoolAuthorizer)
            else frozenset()
        )

        node = self._root
        for seg in segments:
            child = node.children.get(seg)
            if child is None:
                if _is_param(seg):
                    other = node.param_child()
                    if other is not None:
                        raise InvalidRoute(
                            f"path parameter {seg!r} conflicts with sibling {other.segment!r}"
                        )
                if _is_proxy(seg):
                    other = node.proxy_child()
                    if other is not None:
                        raise InvalidRoute(
                            f"proxy segment {seg!r} conflicts with sibling {other.segment!r}"
                        )
                child = _Node(segment=seg)
                node.children[seg] = child
            node = child

        route = Route(
            path=segments,
            method=verb,
            authorizer=resolved,
            required_scopes=required,
            content_handling=content_handling,
            integration_target=target,
        )
        if verb in node.methods:
            raise DuplicateRoute(route.path_str, verb)
        node.methods[verb] = route
        self._routes.append(route)
        return route

    def match(self, method: str, path: str | Iterable[str]) -> RouteMatch | None:
        return self._match(self._root, split_path(path), (method or "").strip().upper(), {})

    def _match(
        self,
        node: _Node,
        segments: tuple[str, ...],
        method: str,
        params: dict[str, str],
    ) -> RouteMatch | None:
        if not segments:
            route = node.methods.get(method) or node.methods.get("ANY")
            return RouteMatch(route=route, path_parameters=dict(params)) if route else None

        head, rest = segments[0], segments[1:]
        literal = node.children.get(head)
        if literal is not None and not _is_param(head) and not _is_proxy(head):
            found = self._match(literal, rest, method, params)
            if found is not None:
                return found

        param = node.param_child()
        if param is not None:
            found = self._match(param, rest, method, {**params, _param_name(param.segment): head})
            if found is not None:
                return found

        proxy = node.proxy_child()
        if proxy is not None:
            route = proxy.methods.get(method) or proxy.methods.get("ANY")
            if route is not None:
                tail = "/".join(segments)
                return RouteMatch(route=route, path_parameters={**params, _param_name(proxy.segment): tail})
        return None


def _media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def is_binary_media_type(content_type: str | None, binary_media_types: Iterable[str]) -> bool:
    media = _media_type(content_type)
    if not media:
        return False
    major = media.split("/", 1)[0]
    for allowed in binary_media_types:
        pattern = allowed.strip().lower()
        if pattern in ("*/*", media):
            return True
        if pattern.endswith("/*") and pattern[:-2] == major:
            return True
    return False


def encode_body(
    route: Route,
    body: bytes | str | None,
    content_type: str | None,
    binary_media_types: Iterable[str],
) -> tuple[bytes | str, bool]:
    """Return the body to forward and whether it is base64 encoded."""
    if body is None:
        return "", False
    if isinstance(body, str):
        return body, False

    allow_listed = is_binary_media_type(content_type, binary_media_types)
    if route.content_handling == PASSTHROUGH and allow_listed:
        return body, False
    if not allow_listed:
        try:
            return body.decode("utf-8"), False
        except UnicodeDecodeError:
            pass
    return base64.b64encode(body).decode("ascii"), True
