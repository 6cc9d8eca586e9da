"""Plain data records for stacks, references and cross-region reads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import NodeStateError

PENDING = "Pending"
PROVISIONING = "Provisioning"
READY = "Ready"
FAILED = "Failed"

CREATE = "Create"
UPDATE = "Update"
DELETE = "Delete"


@dataclass(frozen=True)
class Reference:
    source_node_id: str
    output_name: str


@dataclass(frozen=True)
class ParameterRef:
    region: str
    name: str


@dataclass(frozen=True)
class ResourceSpec:
    kind: str
    name: str
    properties: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass
class CustomResourceInvocation:
    action: str
    parameter_ref: ParameterRef
    last_result: str | None = None
    attempt: int = 0


@dataclass
class StackNode:
    id: str
    inputs: dict[str, Reference] = field(default_factory=dict)
    outputs: dict[str, str | None] = field(default_factory=dict)
    resources: list[ResourceSpec] = field(default_factory=list)
    state: str = PENDING
    parameters: dict[str, ParameterRef] = field(default_factory=dict)
    publishes: dict[str, ParameterRef] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    region: str = ""
    invocations: dict[str, CustomResourceInvocation] = field(default_factory=dict)

    def declares_output(self, name: str) -> bool:
        return name in self.outputs

    def output(self, name: str) -> str | None:
        return self.outputs.get(name)

    def set_output(self, name: str, value: str) -> None:
        if name not in self.outputs:
            raise NodeStateError(f"node {self.id!r} does not declare output {name!r}")
        if self.state == READY:
            raise NodeStateError(f"output {self.id}.{name} is immutable once the node is Ready")
        self.outputs[name] = value

    def reset(self) -> None:
        self.state = PENDING
        self.invocations.clear()
        for name in self.outputs:
            self.outputs[name] = None


@dataclass(frozen=True)
class NodeSpec:
    """What the external provisioning engine receives for one node."""

    node_id: str
    inputs: dict[str, str]
    parameters: dict[str, str]
    resources: tuple[ResourceSpec, ...]
    region: str = ""


def stack_node(
    node_id: str,
    *,
    inputs: dict[str, tuple[str, str] | Reference] | None = None,
    outputs: list[str] | tuple[str, ...] = (),
    resources: list[ResourceSpec] | None = None,
    parameters: dict[str, ParameterRef] | None = None,
    publishes: dict[str, ParameterRef] | None = None,
    depends_on: list[str] | tuple[str, ...] = (),
    region: str = "",
) -> StackNode:
    refs: dict[str, Reference] = {}
    for name, ref in (inputs or {}).items():
        refs[name] = ref if isinstance(ref, Reference) else Reference(ref[0], ref[1])
    return StackNode(
        id=node_id,
        inputs=refs,
        outputs={name: None for name in outputs},
        resources=list(resources or []),
        parameters=dict(parameters or {}),
        publishes=dict(publishes or {}),
        depends_on=tuple(depends_on),
        region=region,
    )
