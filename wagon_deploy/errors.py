from __future__ import annotations

from typing import Any

THROTTLED = "Throttled"
TIMEOUT = "Timeout"
ACCESS_DENIED = "AccessDenied"
NOT_FOUND = "NotFound"
FAILED = "Failed"

RETRYABLE_KINDS = frozenset({THROTTLED, TIMEOUT})


class DeployError(Exception):
    pass


class UsageError(DeployError):
    pass


class GraphError(DeployError):
    pass


class CyclicDependency(GraphError):
    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"cyclic dependency: {' -> '.join(self.cycle)}")


class UnresolvedReference(GraphError):
    def __init__(self, node_id: str, input_name: str, reference: Any, reason: str) -> None:
        self.node_id = node_id
        self.input_name = input_name
        self.reference = reference
        super().__init__(f"unresolved reference {node_id}.{input_name}: {reason}")


class NodeStateError(DeployError):
    pass


class ParameterStoreError(DeployError):
    def __init__(self, kind: str, *, region: str, name: str, message: str = "") -> None:
        self.kind = kind
        self.region = region
        self.name = name
        detail = f": {message}" if message else ""
        super().__init__(f"parameter {name!r} in {region}: {kind}{detail}")


class ResolutionError(DeployError):
    def __init__(self, kind: str, *, ref: Any, attempts: int, message: str = "") -> None:
        self.kind = kind
        self.ref = ref
        self.attempts = attempts
        detail = f": {message}" if message else ""
        super().__init__(
            f"cross-region read of {ref.name!r} in {ref.region} failed after "
            f"{attempts} attempt(s) ({kind}){detail}"
        )

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class DeploymentCancelled(DeployError):
    pass


class RouteError(DeployError):
    pass


class DuplicateRoute(RouteError):
    def __init__(self, path: str, method: str) -> None:
        self.path = path
        self.method = method
        super().__init__(f"duplicate route: {method} {path}")


class TreeSealed(RouteError):
    def __init__(self) -> None:
        super().__init__("route tree is sealed; no further routes may be added")


class InvalidRoute(RouteError):
    pass
