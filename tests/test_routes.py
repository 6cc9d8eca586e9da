import base64

import pytest

from wagon_deploy.errors import DuplicateRoute, InvalidRoute, TreeSealed
from wagon_deploy.routes import (
    CONVERT_TO_TEXT,
    PASSTHROUGH,
    CognitoPoolAuthorizer,
    HandlerRef,
    RouteTree,
    TokenAuthorizer,
    encode_body,
    is_binary_media_type,
)

API = HandlerRef("api")
TOKEN = TokenAuthorizer(HandlerRef("authorizer"))
POOL = CognitoPoolAuthorizer("us-west-2_pool")


def test_literal_route_wins_over_proxy():
    tree = RouteTree()
    tree.add_route("/api/{proxy+}", "ANY", API)
    token = tree.add_route("/api/token", "GET", API)

    found = tree.match("GET", "/api/token")

    assert found.route is token
    assert found.path_parameters == {}


def test_proxy_captures_the_remaining_suffix():
    tree = RouteTree()
    tree.add_route("/api/v1/{proxy+}", "ANY", API)

    found = tree.match("get", "/api/v1/crates/serde/1.0.0/download")

    assert found.route.path_str == "/api/v1/{proxy+}"
    assert found.path_parameters == {"proxy": "crates/serde/1.0.0/download"}


def test_path_parameters_are_captured():
    tree = RouteTree()
    tree.add_route("/api/v1/crates/{crate}/{version}/yank", "DELETE", API)

    found = tree.match("DELETE", "/api/v1/crates/serde/1.0.0/yank")

    assert found.path_parameters == {"crate": "serde", "version": "1.0.0"}


def test_literal_beats_parameter_and_falls_back_when_method_differs():
    tree = RouteTree()
    new = tree.add_route("/api/v1/crates/new", "PUT", API)
    owners = tree.add_route("/api/v1/crates/{crate}", "GET", API)

    assert tree.match("PUT", "/api/v1/crates/new").route is new
    # No GET on the literal, so the parameter route answers.
    found = tree.match("GET", "/api/v1/crates/new")
    assert found.route is owners
    assert found.path_parameters == {"crate": "new"}


def test_specific_method_beats_any():
    tree = RouteTree()
    anything = tree.add_route("/api/token", "ANY", API)
    get = tree.add_route("/api/token", "GET", API)

    assert tree.match("GET", "/api/token").route is get
    assert tree.match("POST", "/api/token").route is anything


def test_unmatched_path_returns_none():
    tree = RouteTree()
    tree.add_route("/api/token", "GET", API)

    assert tree.match("GET", "/api/other") is None
    assert tree.match("POST", "/api/token") is None
    assert tree.match("GET", "/api/token/extra") is None


def test_duplicate_route_is_rejected():
    tree = RouteTree()
    tree.add_route("/api/token", "GET", API)

    with pytest.raises(DuplicateRoute) as exc:
        tree.add_route("api/token/", "get", HandlerRef("other"))

    assert exc.value.path == "/api/token"
    assert exc.value.method == "GET"
    assert len(tree.routes()) == 1


def test_sealed_tree_rejects_additions():
    tree = RouteTree()
    tree.add_route("/api/token", "GET", API)
    tree.seal()

    with pytest.raises(TreeSealed):
        tree.add_route("/api/other", "GET", API)

    assert tree.sealed
    assert [r.path_str for r in tree.routes()] == ["/api/token"]


@pytest.mark.parametrize(
    "path,method",
    [
        ("/api/{proxy+}/tail", "GET"),
        ("/api/{broken", "GET"),
        ("/api/token", "FETCH"),
    ],
)
def test_invalid_routes_are_rejected(path, method):
    with pytest.raises(InvalidRoute):
        RouteTree().add_route(path, method, API)


def test_sibling_parameters_must_share_a_name():
    tree = RouteTree()
    tree.add_route("/api/v1/crates/{crate}", "GET", API)

    with pytest.raises(InvalidRoute):
        tree.add_route("/api/v1/crates/{name}/owners", "GET", API)


def test_routes_inherit_the_default_authorizer_unless_overridden():
    tree = RouteTree(default_authorizer=TOKEN)
    inherited = tree.add_route("/api/token", "GET", API)
    opened = tree.add_route("/health", "GET", API, authorizer=None)
    pooled = tree.add_route("/api/v1/crates", "GET", API, authorizer=POOL, scopes=["wagon-api/read"])

    assert inherited.authorizer == TOKEN
    assert opened.authorizer is None
    assert pooled.authorizer == POOL
    assert tree.authorizers() == [TOKEN, POOL]


def test_scopes_are_kept_only_for_pool_authorizers():
    tree = RouteTree(default_authorizer=TOKEN)
    token_route = tree.add_route("/api/token", "GET", API, scopes=["wagon-api/read"])
    pool_route = tree.add_route(
        "/api/v1/crates", "GET", API, authorizer=POOL, scopes=["wagon-api/read", " ", "wagon-api/write"]
    )

    assert token_route.required_scopes == frozenset()
    assert pool_route.required_scopes == {"wagon-api/read", "wagon-api/write"}


def test_routing_table_is_serializable():
    tree = RouteTree(default_authorizer=POOL)
    tree.add_route("/api/token", "POST", API, scopes=["wagon-api/write"], content_handling=CONVERT_TO_TEXT)

    assert tree.routing_table() == [
        {
            "path": "/api/token",
            "method": "POST",
            "authorizer": {"type": "cognito", "poolId": "us-west-2_pool"},
            "requiredScopes": ["wagon-api/write"],
            "contentHandling": "ConvertToText",
            "target": "api",
        }
    ]


@pytest.mark.parametrize(
    "content_type,allowed,expected",
    [
        ("application/octet-stream", ["application/octet-stream"], True),
        ("application/gzip; charset=binary", ["application/gzip"], True),
        ("image/png", ["image/*"], True),
        ("text/plain", ["*/*"], True),
        ("application/json", ["application/octet-stream"], False),
        (None, ["*/*"], False),
    ],
)
def test_binary_media_type_matching(content_type, allowed, expected):
    assert is_binary_media_type(content_type, allowed) is expected


def test_passthrough_forwards_allow_listed_bytes_unchanged():
    route = RouteTree().add_route("/api/v1/crates/new", "PUT", API, content_handling=PASSTHROUGH)
    payload = b"\x00\x01crate"

    assert encode_body(route, payload, "application/octet-stream", ["application/octet-stream"]) == (payload, False)


def test_convert_to_text_base64_encodes_allow_listed_bytes():
    route = RouteTree().add_route("/api/token", "ANY", API, content_handling=CONVERT_TO_TEXT)
    payload = b"\x00\xffbinary"

    body, is_b64 = encode_body(route, payload, "application/octet-stream", ["application/octet-stream"])

    assert is_b64 is True
    assert base64.b64decode(body) == payload


def test_text_bodies_are_forwarded_as_text():
    route = RouteTree().add_route("/api/token", "POST", API, content_handling=CONVERT_TO_TEXT)

    assert encode_body(route, b'{"name":"ci"}', "application/json", ["application/octet-stream"]) == (
        '{"name":"ci"}',
        False,
    )
    assert encode_body(route, None, None, []) == ("", False)
