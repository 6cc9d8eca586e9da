from __future__ import annotations

from aws_cdk import (
    CfnOutput,
    Stack,
    aws_apigateway as apigw,
    aws_certificatemanager as acm,
    aws_cognito as cognito,
    aws_lambda as _lambda,
)
from constructs import Construct

from wagon_deploy.errors import UsageError
from wagon_deploy.routes import (
    CONVERT_TO_TEXT,
    CognitoPoolAuthorizer,
    Route,
    RouteTree,
    TokenAuthorizer,
)


def _identity_header(identity_source: str) -> str:
    prefix = "method.request.header."
    if identity_source.startswith(prefix):
        return identity_source[len(prefix):]
    return identity_source


class RouteApiStack(Stack):
    """Renders a sealed route tree as an API Gateway REST API.

    Integration targets and token authorizer handlers are Lambda function
    ARNs produced by other stacks; they are imported, never created here.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        tree: RouteTree,
        api_name: str = "wagon-api",
        stage_name: str = "prod",
        domain_name: str = "",
        certificate_arn: str = "",
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        if not tree.sealed:
            raise UsageError("route tree must be sealed before it is rendered")
        routes = tree.routes()
        if not routes:
            raise UsageError("route tree has no routes")

        domain_options = None
        if domain_name and certificate_arn:
            # Edge endpoints need the certificate from us-east-1, read cross-region.
            domain_options = apigw.DomainNameOptions(
                domain_name=domain_name,
                certificate=acm.Certificate.from_certificate_arn(self, "ApiCert", certificate_arn),
                endpoint_type=apigw.EndpointType.EDGE,
            )

        self.rest_api = apigw.RestApi(
            self,
            "Api",
            rest_api_name=api_name,
            binary_media_types=list(tree.binary_media_types) or None,
            deploy_options=apigw.StageOptions(stage_name=stage_name),
            domain_name=domain_options,
        )

        self._functions: dict[str, _lambda.IFunction] = {}
        self._authorizers: dict[object, apigw.IAuthorizer] = {}
        self._resources: dict[tuple[str, ...], apigw.IResource] = {(): self.rest_api.root}

        for route in routes:
            self._add_method(route)

        CfnOutput(self, "RestApiId", value=self.rest_api.rest_api_id)
        CfnOutput(self, "ApiUrl", value=self.rest_api.url)

    def _function(self, arn: str) -> _lambda.IFunction:
        fn = self._functions.get(arn)
        if fn is None:
            fn = _lambda.Function.from_function_arn(self, f"Handler{len(self._functions)}", arn)
            self._functions[arn] = fn
        return fn

    def _authorizer(self, ref) -> apigw.IAuthorizer | None:
        if ref is None:
            return None
        existing = self._authorizers.get(ref)
        if existing is not None:
            return existing
        index = len(self._authorizers)
        if isinstance(ref, TokenAuthorizer):
            authorizer = apigw.TokenAuthorizer(
                self,
                f"TokenAuthorizer{index}",
                handler=self._function(ref.handler.name),
                identity_source=apigw.IdentitySource.header(_identity_header(ref.identity_source)),
            )
        elif isinstance(ref, CognitoPoolAuthorizer):
            authorizer = apigw.CognitoUserPoolsAuthorizer(
                self,
                f"CognitoAuthorizer{index}",
                cognito_user_pools=[
                    cognito.UserPool.from_user_pool_id(self, f"UserPool{index}", ref.pool_id)
                ],
                identity_source=apigw.IdentitySource.header(_identity_header(ref.identity_source)),
            )
        else:
            raise UsageError(f"unsupported authorizer: {ref!r}")
        self._authorizers[ref] = authorizer
        return authorizer

    def _resource(self, path: tuple[str, ...]) -> apigw.IResource:
        resource = self._resources.get(path)
        if resource is None:
            resource = self._resource(path[:-1]).add_resource(path[-1])
            self._resources[path] = resource
        return resource

    def _add_method(self, route: Route) -> None:
        integration_options = {}
        if route.content_handling == CONVERT_TO_TEXT:
            integration_options["content_handling"] = apigw.ContentHandling.CONVERT_TO_TEXT
        integration = apigw.LambdaIntegration(
            self._function(route.integration_target.name),
            proxy=True,
            **integration_options,
        )
        method_options = {}
        authorizer = self._authorizer(route.authorizer)
        if authorizer is not None:
            method_options["authorizer"] = authorizer
        if isinstance(route.authorizer, CognitoPoolAuthorizer) and route.required_scopes:
            method_options["authorization_scopes"] = sorted(route.required_scopes)
        if route.authorizer is None:
            method_options["authorization_type"] = apigw.AuthorizationType.NONE
        self._resource(route.path).add_method(route.method, integration, **method_options)
