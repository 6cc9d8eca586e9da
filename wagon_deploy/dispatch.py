from __future__ import annotations

import json
import time
from typing import Any, Callable

from .authorizers import (
    API_KEY,
    BEARER,
    header_value,
    method_arn,
    missing_scopes,
    parse_authorization_header,
    policy_allows,
)
from .errors import UsageError
from .logs import log_event
from .routes import CognitoPoolAuthorizer, HandlerRef, Route, RouteTree, encode_body

Invoke = Callable[[HandlerRef, dict[str, Any]], dict[str, Any]]


def _response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"content-type": "application/json"},
        "body": json.dumps(body),
    }


class RouteDispatcher:
    """Dispatches normalized requests through a sealed route tree."""

    def __init__(
        self,
        tree: RouteTree,
        invoke: Invoke,
        *,
        region: str = "us-east-1",
        account_id: str = "000000000000",
        api_id: str = "local",
        stage: str = "prod",
    ) -> None:
        if not tree.sealed:
            raise UsageError("route tree must be sealed before dispatching requests")
        self.tree = tree
        self.invoke = invoke
        self.region = region
        self.account_id = account_id
        self.api_id = api_id
        self.stage = stage

    def _method_arn(self, method: str, path: str) -> str:
        return method_arn(
            region=self.region,
            account_id=self.account_id,
            api_id=self.api_id,
            stage=self.stage,
            method=method,
            path=path,
        )

    def _authorize(
        self,
        route: Route,
        *,
        method: str,
        path: str,
        headers: dict[str, str],
        claims: dict[str, Any] | None,
    ) -> tuple[dict[str, Any] | None, dict[str, Any]]:
        authorizer = route.authorizer
        if authorizer is None:
            return None, {}

        if isinstance(authorizer, CognitoPoolAuthorizer):
            if not claims:
                return _response(401, {"error": "UNAUTHORIZED"}), {}
            missing = missing_scopes(route, claims)
            if missing:
                return _response(403, {"error": "INSUFFICIENT_SCOPE", "missing": missing}), {}
            return None, {"claims": dict(claims)}

        header = parse_authorization_header(header_value(headers, "authorization"))
        if header.kind not in (BEARER, API_KEY):
            return _response(401, {"error": "UNAUTHORIZED"}), {}
        arn = self._method_arn(method, path)
        decision = self.invoke(
            authorizer.handler,
            {
                "type": "TOKEN",
                "authorizationToken": header_value(headers, "authorization"),
                "methodArn": arn,
            },
        )
        if not policy_allows(decision, arn):
            return _response(403, {"error": "FORBIDDEN"}), {}
        context = dict(decision.get("context") or {})
        context["principalId"] = decision.get("principalId", "")
        return None, {"authorizer": context}

    def dispatch(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        body: bytes | str | None = b"",
        claims: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        start = time.time()
        headers = dict(headers or {})
        verb = (method or "").strip().upper()
        log: dict[str, Any] = {"method": verb, "path": path}

        found = self.tree.match(verb, path)
        if found is None:
            log_event("route_dispatch", outcome="no_route", **log)
            return _response(404, {"error": "NOT_FOUND"})
        route = found.route
        log["route"] = f"{route.method} {route.path_str}"

        denied, request_context = self._authorize(
            route,
            method=verb,
            path=path,
            headers=headers,
            claims=claims,
        )
        if denied is not None:
            log_event("route_dispatch", outcome="denied", status=denied["statusCode"], **log)
            return denied

        forwarded, is_b64 = encode_body(
            route,
            body,
            header_value(headers, "content-type"),
            self.tree.binary_media_types,
        )
        envelope = {
            "method": verb,
            "path": path,
            "headers": headers,
            "body": forwarded,
            "isBase64Encoded": is_b64,
            "pathParameters": dict(found.path_parameters),
            "requestContext": request_context,
        }
        resp = self.invoke(route.integration_target, envelope)
        log_event(
            "route_dispatch",
            outcome="success",
            target=route.integration_target.name,
            status=(resp or {}).get("statusCode"),
            duration_ms=int((time.time() - start) * 1000),
            **log,
        )
        return resp
