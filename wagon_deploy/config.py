from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from dotenv import load_dotenv

from .cross_region import MAX_ATTEMPTS_CAP, backoff_delays
from .errors import UsageError

ROUTE_VARIANTS = ("proxy", "scoped")

DEFAULT_BINARY_MEDIA_TYPES = (
    "application/octet-stream",
    "application/gzip",
    "application/x-tar",
)


@dataclass(frozen=True)
class DeployConfig:
    stage: str = "prod"
    region: str = "us-west-2"
    account: str = ""
    cert_region: str = "us-east-1"
    cert_param_name: str = ""
    api_domain: str = ""
    zone_name: str = ""
    user_pool_id: str = ""
    route_variant: str = "proxy"
    binary_media_types: tuple[str, ...] = field(default=DEFAULT_BINARY_MEDIA_TYPES)
    api_handler_arn: str = ""
    authorizer_arn: str = ""
    max_attempts: int = MAX_ATTEMPTS_CAP
    attempt_timeout: float = 5.0
    base_backoff: float = 0.5
    max_backoff: float = 8.0
    deployment_timeout: float = 900.0
    max_parallel: int = 4

    @property
    def resolved_cert_param_name(self) -> str:
        return self.cert_param_name or f"/wagon/{self.stage}/api-cert-arn"

    @property
    def domain_name(self) -> str:
        if not self.api_domain or not self.zone_name:
            return ""
        return f"{self.api_domain}.{self.zone_name}"

    def retry_budget_seconds(self) -> float:
        attempts = min(self.max_attempts, MAX_ATTEMPTS_CAP)
        delays = backoff_delays(attempts, base_delay=self.base_backoff, max_delay=self.max_backoff)
        return attempts * self.attempt_timeout + sum(delays)

    def validate(self) -> "DeployConfig":
        if not self.stage:
            raise UsageError("missing WAGON_STAGE")
        if self.route_variant not in ROUTE_VARIANTS:
            raise UsageError(
                f"WAGON_ROUTE_VARIANT must be one of {', '.join(ROUTE_VARIANTS)} (got {self.route_variant!r})"
            )
        if self.max_attempts < 1:
            raise UsageError("WAGON_MAX_ATTEMPTS must be >= 1")
        if self.attempt_timeout <= 0 or self.deployment_timeout <= 0:
            raise UsageError("timeouts must be positive")
        if self.max_parallel < 1:
            raise UsageError("WAGON_MAX_PARALLEL must be >= 1")
        budget = self.retry_budget_seconds()
        if budget >= self.deployment_timeout:
            raise UsageError(
                f"cross-region retry budget ({budget:.1f}s) must be below the deployment timeout "
                f"({self.deployment_timeout:.1f}s)"
            )
        return self


def _str(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or "").strip() or default


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _str(env, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise UsageError(f"invalid {name}: {raw!r} is not an integer") from e


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _str(env, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise UsageError(f"invalid {name}: {raw!r} is not a number") from e


def _csv(env: Mapping[str, str], name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _str(env, name)
    if not raw:
        return default
    out: list[str] = []
    for part in raw.split(","):
        v = part.strip()
        if v and v not in out:
            out.append(v)
    return tuple(out)


def load_config(environ: Mapping[str, str] | None = None) -> DeployConfig:
    if environ is None:
        # Discover .env without overriding already-exported values.
        load_dotenv()
        environ = os.environ
    env = environ
    return DeployConfig(
        stage=_str(env, "WAGON_STAGE", "prod"),
        region=_str(env, "WAGON_REGION", _str(env, "AWS_REGION", "us-west-2")),
        account=_str(env, "WAGON_ACCOUNT", _str(env, "CDK_DEFAULT_ACCOUNT")),
        cert_region=_str(env, "WAGON_CERT_REGION", "us-east-1"),
        cert_param_name=_str(env, "WAGON_CERT_PARAM_NAME"),
        api_domain=_str(env, "WAGON_API_DOMAIN"),
        zone_name=_str(env, "WAGON_ZONE_NAME"),
        user_pool_id=_str(env, "WAGON_USER_POOL_ID"),
        route_variant=_str(env, "WAGON_ROUTE_VARIANT", "proxy").lower(),
        binary_media_types=_csv(env, "WAGON_BINARY_MEDIA_TYPES", DEFAULT_BINARY_MEDIA_TYPES),
        api_handler_arn=_str(env, "WAGON_API_HANDLER_ARN"),
        authorizer_arn=_str(env, "WAGON_AUTHORIZER_ARN"),
        max_attempts=_int(env, "WAGON_MAX_ATTEMPTS", MAX_ATTEMPTS_CAP),
        attempt_timeout=_float(env, "WAGON_ATTEMPT_TIMEOUT", 5.0),
        base_backoff=_float(env, "WAGON_BASE_BACKOFF", 0.5),
        max_backoff=_float(env, "WAGON_MAX_BACKOFF", 8.0),
        deployment_timeout=_float(env, "WAGON_DEPLOYMENT_TIMEOUT", 900.0),
        max_parallel=_int(env, "WAGON_MAX_PARALLEL", 4),
    ).validate()
