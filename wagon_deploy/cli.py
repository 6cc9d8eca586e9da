from __future__ import annotations

import json
import sys
from dataclasses import replace
from typing import Any

import click
import typer
from rich.console import Console

from . import __version__
from .config import DeployConfig, load_config
from .cross_region import CrossRegionParameterReader
from .errors import DeployError, UsageError
from .graph import build
from .logs import set_quiet
from .model import ParameterRef
from .parameters import ParameterStoreClient
from .topology import route_tree_for, wagon_nodes

app = typer.Typer(
    name="wagon-deploy",
    help="Deployment graph, cross-region parameters and route tree of the wagon API.",
    no_args_is_help=True,
    add_completion=False,
)

_ERROR_CONSOLE = Console(stderr=True)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {msg}")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"wagon-deploy {__version__}")
        raise typer.Exit(code=0)


def _print_json(obj: Any, *, pretty: bool = False) -> None:
    if pretty:
        sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")
    else:
        sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True) + "\n")


@app.callback()
def app_callback(
    ctx: typer.Context,
    quiet: bool = typer.Option(False, "--quiet", help="Suppress structured stderr logs"),
    pretty: bool = typer.Option(False, "--pretty", help="Indent JSON output"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True),
) -> None:
    del version
    set_quiet(quiet)
    ctx.obj = {"pretty": pretty}


def _pretty(ctx: typer.Context) -> bool:
    obj = ctx.obj if isinstance(ctx.obj, dict) else {}
    return bool(obj.get("pretty"))


def _config(variant: str = "") -> DeployConfig:
    config = load_config()
    if variant:
        config = replace(config, route_variant=variant.strip().lower()).validate()
    return config


def _store(config: DeployConfig) -> ParameterStoreClient:
    return ParameterStoreClient(attempt_timeout=config.attempt_timeout)


@app.command("plan", help="Print the provisioning ranks of the deployment graph.")
def plan(ctx: typer.Context) -> None:
    config = _config()
    deployment = build(wagon_nodes(config))
    _print_json({"kind": "wagon.deploy.plan.v1", "stage": config.stage, **deployment.to_json()}, pretty=_pretty(ctx))


@app.command("routes", help="Print the sealed routing table.")
def routes(
    ctx: typer.Context,
    variant: str = typer.Option("", "--variant", help="Route tree variant: proxy or scoped"),
) -> None:
    config = _config(variant)
    tree = route_tree_for(config)
    _print_json(
        {
            "kind": "wagon.deploy.routes.v1",
            "variant": config.route_variant,
            "state": tree.state,
            "binaryMediaTypes": list(tree.binary_media_types),
            "routes": tree.routing_table(),
        },
        pretty=_pretty(ctx),
    )


@app.command("match", help="Show which route a request would dispatch to.")
def match(
    ctx: typer.Context,
    method: str = typer.Argument(..., help="HTTP method"),
    path: str = typer.Argument(..., help="Request path"),
    variant: str = typer.Option("", "--variant", help="Route tree variant: proxy or scoped"),
) -> None:
    config = _config(variant)
    found = route_tree_for(config).match(method, path)
    if found is None:
        raise UsageError(f"no route for {method.upper()} {path}")
    _print_json(
        {
            "kind": "wagon.deploy.match.v1",
            "route": found.route.to_json(),
            "pathParameters": found.path_parameters,
        },
        pretty=_pretty(ctx),
    )


@app.command("param-get", help="Read one parameter from a region's parameter store.")
def param_get(
    ctx: typer.Context,
    region: str = typer.Argument(..., help="Parameter region"),
    name: str = typer.Argument(..., help="Parameter name"),
) -> None:
    config = _config()
    value = _store(config).get(region, name)
    _print_json({"kind": "wagon.deploy.param.v1", "region": region, "name": name, "value": value}, pretty=_pretty(ctx))


@app.command("param-put", help="Publish one parameter (used by the publishing stack only).")
def param_put(
    ctx: typer.Context,
    region: str = typer.Argument(..., help="Parameter region"),
    name: str = typer.Argument(..., help="Parameter name"),
    value: str = typer.Argument(..., help="Parameter value"),
) -> None:
    config = _config()
    _store(config).put(region, name, value)
    _print_json({"kind": "wagon.deploy.param.v1", "region": region, "name": name, "written": True}, pretty=_pretty(ctx))


@app.command("resolve", help="Resolve a cross-region parameter with retry and backoff.")
def resolve(
    ctx: typer.Context,
    region: str = typer.Argument(..., help="Parameter region"),
    name: str = typer.Argument(..., help="Parameter name"),
    max_attempts: int = typer.Option(0, "--max-attempts", help="Override WAGON_MAX_ATTEMPTS"),
) -> None:
    config = _config()
    reader = CrossRegionParameterReader.from_config(config, _store(config))
    if max_attempts:
        reader = CrossRegionParameterReader(
            reader.store,
            max_attempts=max_attempts,
            base_delay=config.base_backoff,
            max_delay=config.max_backoff,
        )
    value = reader.resolve(ParameterRef(region=region, name=name))
    _print_json(
        {
            "kind": "wagon.deploy.resolve.v1",
            "region": region,
            "name": name,
            "value": value,
        },
        pretty=_pretty(ctx),
    )


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        result = app(args=argv, prog_name="wagon-deploy", standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _rich_error(str(e))
        return 2
    except DeployError as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
