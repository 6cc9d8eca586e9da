"""The wagon registry deployment expressed as data.

Stacks, their outputs and the references between them, plus the two route
tree configurations the registry API is deployed with.
"""

from __future__ import annotations

from typing import Iterable

from .config import DEFAULT_BINARY_MEDIA_TYPES, DeployConfig
from .errors import UsageError
from .model import ParameterRef, ResourceSpec, StackNode, stack_node
from .routes import (
    CONVERT_TO_TEXT,
    PASSTHROUGH,
    CognitoPoolAuthorizer,
    HandlerRef,
    RouteTree,
    TokenAuthorizer,
)

RESOURCE_SERVER_ID = "wagon-api"
READ_SCOPE = f"{RESOURCE_SERVER_ID}/read"
WRITE_SCOPE = f"{RESOURCE_SERVER_ID}/write"

ROUTE_TREE_NODE = "WagonApi"


def cert_parameter(config: DeployConfig) -> ParameterRef:
    return ParameterRef(region=config.cert_region, name=config.resolved_cert_param_name)


def wagon_nodes(config: DeployConfig) -> list[StackNode]:
    cert_param = cert_parameter(config)
    return [
        stack_node(
            "Cert",
            outputs=["certArn", "domainName"],
            resources=[
                ResourceSpec("certificate", "Cert", {"domainName": config.domain_name, "validation": "dns"}),
            ],
            publishes={"certArn": cert_param},
            region=config.cert_region,
        ),
        stack_node(
            "TokensDb",
            outputs=["tableArn", "tableName", "tokensIndexName"],
            resources=[
                ResourceSpec(
                    "table",
                    "Tokens",
                    {
                        "partitionKey": "user_id",
                        "billingMode": "PAY_PER_REQUEST",
                        "globalSecondaryIndexes": [{"name": "TokensIndex", "partitionKey": "token"}],
                    },
                ),
            ],
            region=config.region,
        ),
        stack_node(
            "ApiHandler",
            inputs={
                "tableArn": ("TokensDb", "tableArn"),
                "tableName": ("TokensDb", "tableName"),
                "tokensIndexName": ("TokensDb", "tokensIndexName"),
            },
            outputs=["functionArn"],
            resources=[ResourceSpec("function", "ApiFunction", {"memorySize": 128, "timeoutSeconds": 2})],
            region=config.region,
        ),
        stack_node(
            "Authorizer",
            inputs={
                "tableArn": ("TokensDb", "tableArn"),
                "tokensIndexName": ("TokensDb", "tokensIndexName"),
                "apiHandlerArn": ("ApiHandler", "functionArn"),
            },
            outputs=["functionArn"],
            resources=[ResourceSpec("function", "TokenAuthorizerFunction", {"memorySize": 128})],
            region=config.region,
        ),
        stack_node(
            "Auth",
            outputs=["userPoolId", "readScope", "writeScope"],
            resources=[
                ResourceSpec(
                    "resourceServer",
                    RESOURCE_SERVER_ID,
                    {"userPoolId": config.user_pool_id, "scopes": ["read", "write"]},
                ),
            ],
            region=config.region,
        ),
        stack_node(
            ROUTE_TREE_NODE,
            inputs={
                "apiHandlerArn": ("ApiHandler", "functionArn"),
                "authorizerArn": ("Authorizer", "functionArn"),
                "userPoolId": ("Auth", "userPoolId"),
            },
            outputs=["restApiId", "apiUrl"],
            resources=[ResourceSpec("routeTree", "Api", {"variant": config.route_variant})],
            parameters={"certArn": cert_param},
            # The certificate is read cross-region, so the substrate never sees this edge.
            depends_on=["Cert"],
            region=config.region,
        ),
        stack_node(
            "Swagger",
            inputs={"userPoolId": ("Auth", "userPoolId")},
            outputs=["clientId"],
            resources=[ResourceSpec("userPoolClient", "wagon-swagger", {"scopes": [READ_SCOPE]})],
            region=config.region,
        ),
        stack_node(
            "Dashboard",
            inputs={"restApiId": (ROUTE_TREE_NODE, "restApiId")},
            outputs=["dashboardName"],
            resources=[ResourceSpec("dashboard", "WagonDashboard", {})],
            region=config.region,
        ),
    ]


def wagon_route_tree(
    variant: str,
    *,
    api_handler: HandlerRef,
    authorizer_handler: HandlerRef | None = None,
    user_pool_id: str = "",
    binary_media_types: Iterable[str] = DEFAULT_BINARY_MEDIA_TYPES,
) -> RouteTree:
    if variant == "proxy":
        if authorizer_handler is None:
            raise UsageError("proxy route tree needs a token authorizer handler")
        tree = RouteTree(
            default_authorizer=TokenAuthorizer(authorizer_handler),
            binary_media_types=binary_media_types,
        )
        tree.add_route("/api/token", "ANY", api_handler, content_handling=CONVERT_TO_TEXT)
        tree.add_route("/api/v1/{proxy+}", "ANY", api_handler)
        return tree

    if variant == "scoped":
        if not user_pool_id:
            raise UsageError("scoped route tree needs a user pool id")
        tree = RouteTree(
            default_authorizer=CognitoPoolAuthorizer(user_pool_id),
            binary_media_types=binary_media_types,
        )
        read, write = [READ_SCOPE], [WRITE_SCOPE]
        for method, scopes in (("GET", read), ("POST", write), ("DELETE", write)):
            tree.add_route("/api/token", method, api_handler, scopes=scopes, content_handling=CONVERT_TO_TEXT)
        tree.add_route("/api/v1/crates", "GET", api_handler, scopes=read, content_handling=CONVERT_TO_TEXT)
        # Crate archives arrive as binary bodies.
        tree.add_route("/api/v1/crates/new", "PUT", api_handler, scopes=write, content_handling=PASSTHROUGH)
        tree.add_route(
            "/api/v1/crates/{crate}/{version}/download",
            "GET",
            api_handler,
            scopes=read,
            content_handling=PASSTHROUGH,
        )
        tree.add_route(
            "/api/v1/crates/{crate}/{version}/yank",
            "DELETE",
            api_handler,
            scopes=write,
            content_handling=CONVERT_TO_TEXT,
        )
        tree.add_route(
            "/api/v1/crates/{crate}/{version}/unyank",
            "PUT",
            api_handler,
            scopes=write,
            content_handling=CONVERT_TO_TEXT,
        )
        for method, scopes in (("GET", read), ("PUT", write), ("DELETE", write)):
            tree.add_route(
                "/api/v1/crates/{crate}/owners",
                method,
                api_handler,
                scopes=scopes,
                content_handling=CONVERT_TO_TEXT,
            )
        return tree

    raise UsageError(f"unknown route variant {variant!r}")


def route_tree_for(config: DeployConfig, inputs: dict[str, str] | None = None) -> RouteTree:
    """Builds and seals the route tree from resolved handler references.

    ``inputs`` are the resolved inputs of the route tree node; configured
    ARNs are used when a value is missing, node output names otherwise.
    """
    inputs = inputs or {}
    handler = inputs.get("apiHandlerArn") or config.api_handler_arn or "ApiHandler.functionArn"
    authorizer = inputs.get("authorizerArn") or config.authorizer_arn or "Authorizer.functionArn"
    pool = inputs.get("userPoolId") or config.user_pool_id or "Auth.userPoolId"
    tree = wagon_route_tree(
        config.route_variant,
        api_handler=HandlerRef(handler),
        authorizer_handler=HandlerRef(authorizer),
        user_pool_id=pool,
        binary_media_types=config.binary_media_types,
    )
    return tree.seal()
