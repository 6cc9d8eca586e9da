import sys
from pathlib import Path

import pytest
from aws_cdk import App, Environment
from aws_cdk import assertions

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stacks.route_api_stack import RouteApiStack
from wagon_deploy.errors import UsageError
from wagon_deploy.routes import HandlerRef, RouteTree
from wagon_deploy.topology import READ_SCOPE, WRITE_SCOPE, wagon_route_tree

ENV = Environment(account="123456789012", region="us-west-2")
API_ARN = "arn:aws:lambda:us-west-2:123456789012:function:wagon-api"
AUTHORIZER_ARN = "arn:aws:lambda:us-west-2:123456789012:function:wagon-authorizer"


def _template(tree: RouteTree, **kwargs) -> assertions.Template:
    app = App()
    stack = RouteApiStack(app, "RouteApiTestStack", tree=tree, env=ENV, **kwargs)
    return assertions.Template.from_stack(stack)


def _resources(template: assertions.Template, resource_type: str) -> list[dict]:
    return [
        resource.get("Properties") or {}
        for resource in template.to_json()["Resources"].values()
        if resource.get("Type") == resource_type
    ]


def test_proxy_tree_renders_token_authorizer_and_binary_types():
    tree = wagon_route_tree(
        "proxy",
        api_handler=HandlerRef(API_ARN),
        authorizer_handler=HandlerRef(AUTHORIZER_ARN),
    ).seal()
    template = _template(tree, stage_name="test")

    template.resource_count_is("AWS::ApiGateway::Method", 2)
    template.resource_count_is("AWS::ApiGateway::Authorizer", 1)
    template.has_resource_properties("AWS::ApiGateway::Authorizer", {"Type": "TOKEN"})
    template.has_resource_properties(
        "AWS::ApiGateway::RestApi",
        {"BinaryMediaTypes": ["application/octet-stream", "application/gzip", "application/x-tar"]},
    )
    template.has_resource_properties("AWS::ApiGateway::Stage", {"StageName": "test"})
    template.has_resource_properties("AWS::ApiGateway::Resource", {"PathPart": "{proxy+}"})
    template.has_resource_properties(
        "AWS::ApiGateway::Method",
        {
            "HttpMethod": "ANY",
            "AuthorizationType": "CUSTOM",
            "Integration": assertions.Match.object_like({"ContentHandling": "CONVERT_TO_TEXT"}),
        },
    )
    template.has_output("RestApiId", {})
    template.has_output("ApiUrl", {})


def test_scoped_tree_renders_pool_authorizer_with_scopes():
    tree = wagon_route_tree("scoped", api_handler=HandlerRef(API_ARN), user_pool_id="us-west-2_abc123").seal()
    template = _template(tree)

    template.resource_count_is("AWS::ApiGateway::Method", 11)
    template.resource_count_is("AWS::ApiGateway::Authorizer", 1)
    template.has_resource_properties("AWS::ApiGateway::Authorizer", {"Type": "COGNITO_USER_POOLS"})

    methods = _resources(template, "AWS::ApiGateway::Method")
    assert {m["AuthorizationType"] for m in methods} == {"COGNITO_USER_POOLS"}
    scopes = sorted(tuple(m["AuthorizationScopes"]) for m in methods)
    assert scopes.count((READ_SCOPE,)) == 4
    assert scopes.count((WRITE_SCOPE,)) == 7


def test_open_routes_have_no_authorizer():
    tree = RouteTree()
    tree.add_route("/health", "GET", HandlerRef(API_ARN))
    template = _template(tree.seal())

    template.resource_count_is("AWS::ApiGateway::Authorizer", 0)
    template.has_resource_properties("AWS::ApiGateway::Method", {"HttpMethod": "GET", "AuthorizationType": "NONE"})


def test_custom_domain_uses_the_cross_region_certificate():
    tree = RouteTree()
    tree.add_route("/health", "GET", HandlerRef(API_ARN))
    template = _template(
        tree.seal(),
        domain_name="api.wagon.example.com",
        certificate_arn="arn:aws:acm:us-east-1:123456789012:certificate/abc",
    )

    template.has_resource_properties(
        "AWS::ApiGateway::DomainName",
        {
            "DomainName": "api.wagon.example.com",
            "CertificateArn": "arn:aws:acm:us-east-1:123456789012:certificate/abc",
        },
    )


def test_draft_or_empty_trees_are_rejected():
    tree = RouteTree()
    tree.add_route("/health", "GET", HandlerRef(API_ARN))

    with pytest.raises(UsageError):
        RouteApiStack(App(), "Draft", tree=tree, env=ENV)
    with pytest.raises(UsageError):
        RouteApiStack(App(), "Empty", tree=RouteTree().seal(), env=ENV)
