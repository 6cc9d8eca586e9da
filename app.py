#!/usr/bin/env python3
import aws_cdk as cdk

from stacks.route_api_stack import RouteApiStack
from wagon_deploy.config import load_config
from wagon_deploy.cross_region import CrossRegionParameterReader
from wagon_deploy.errors import UsageError
from wagon_deploy.graph import build
from wagon_deploy.logs import log_event
from wagon_deploy.parameters import ParameterStoreClient
from wagon_deploy.topology import ROUTE_TREE_NODE, cert_parameter, route_tree_for, wagon_nodes

app = cdk.App()
config = load_config()

# Graph errors (cycles, dangling references) stop synthesis before anything is emitted.
plan = build(wagon_nodes(config))
log_event("deployment_plan", stage=config.stage, **plan.to_json())

if not config.api_handler_arn:
    raise UsageError("missing WAGON_API_HANDLER_ARN (output functionArn of the ApiHandler stack)")
if config.route_variant == "proxy" and not config.authorizer_arn:
    raise UsageError("missing WAGON_AUTHORIZER_ARN (output functionArn of the Authorizer stack)")
if config.route_variant == "scoped" and not config.user_pool_id:
    raise UsageError("missing WAGON_USER_POOL_ID")

certificate_arn = ""
if config.domain_name:
    # The certificate lives in the cert region; read it explicitly instead of a stack reference.
    reader = CrossRegionParameterReader.from_config(
        config, ParameterStoreClient(attempt_timeout=config.attempt_timeout)
    )
    certificate_arn = reader.resolve(cert_parameter(config))

RouteApiStack(
    app,
    f"{ROUTE_TREE_NODE}-{config.stage}",
    tree=route_tree_for(config),
    api_name=f"wagon-api-{config.stage}",
    stage_name=config.stage,
    domain_name=config.domain_name,
    certificate_arn=certificate_arn,
    env=cdk.Environment(
        account=config.account or None,
        region=config.region,
    ),
)

app.synth()
