from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from typing import Any

from .routes import CognitoPoolAuthorizer, Route

POLICY_VERSION = "2012-10-17"

NOT_PRESENT = "NotPresent"
EMPTY = "Empty"
BEARER = "Bearer"
API_KEY = "ApiKey"

_BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class AuthorizationHeader:
    kind: str
    value: str = ""


def parse_authorization_header(value: str | None) -> AuthorizationHeader:
    if value is None:
        return AuthorizationHeader(NOT_PRESENT)
    if value == "":
        return AuthorizationHeader(EMPTY)
    if value.startswith(_BEARER_PREFIX):
        return AuthorizationHeader(BEARER, value[len(_BEARER_PREFIX):])
    return AuthorizationHeader(API_KEY, value)


def header_value(headers: dict[str, str] | None, name: str) -> str | None:
    for key, val in (headers or {}).items():
        if key.lower() == name.lower():
            return val
    return None


def method_arn(
    *,
    region: str,
    account_id: str,
    api_id: str,
    stage: str,
    method: str,
    path: str,
) -> str:
    resource = path.lstrip("/")
    return f"arn:aws:execute-api:{region}:{account_id}:{api_id}/{stage}/{method.upper()}/{resource}"


def policy_document(
    principal_id: str,
    effect: str,
    resources: list[str],
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if effect not in ("Allow", "Deny"):
        raise ValueError(f"invalid policy effect: {effect!r}")
    out: dict[str, Any] = {
        "principalId": principal_id,
        "policyDocument": {
            "Version": POLICY_VERSION,
            "Statement": [
                {
                    "Action": "execute-api:Invoke",
                    "Effect": effect,
                    "Resource": list(resources),
                }
            ],
        },
    }
    if context:
        out["context"] = dict(context)
    return out


def _statement_resources(stmt: dict[str, Any]) -> list[str]:
    res = stmt.get("Resource", [])
    if isinstance(res, str):
        return [res]
    return [str(r) for r in res]


def policy_allows(response: dict[str, Any] | None, arn: str) -> bool:
    if not isinstance(response, dict):
        return False
    doc = response.get("policyDocument") or {}
    statements = doc.get("Statement") or []
    if isinstance(statements, dict):
        statements = [statements]
    allowed = False
    for stmt in statements:
        if not isinstance(stmt, dict):
            continue
        if not any(fnmatch.fnmatchcase(arn, pattern) for pattern in _statement_resources(stmt)):
            continue
        if stmt.get("Effect") == "Deny":
            return False
        if stmt.get("Effect") == "Allow":
            allowed = True
    return allowed


def granted_scopes(claims: dict[str, Any] | None) -> frozenset[str]:
    raw = (claims or {}).get("scope") or ""
    return frozenset(part for part in str(raw).split() if part)


def missing_scopes(route: Route, claims: dict[str, Any] | None) -> list[str]:
    if not isinstance(route.authorizer, CognitoPoolAuthorizer):
        return []
    return sorted(route.required_scopes - granted_scopes(claims))


def required_scopes_satisfied(route: Route, claims: dict[str, Any] | None) -> bool:
    return not missing_scopes(route, claims)
