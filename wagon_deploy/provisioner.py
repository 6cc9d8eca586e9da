from __future__ import annotations

import threading
import time
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable

from .cross_region import CrossRegionParameterReader
from .errors import DeployError, DeploymentCancelled, NodeStateError
from .graph import DeploymentPlan
from .logs import log_event
from .model import (
    CREATE,
    DELETE,
    FAILED,
    PROVISIONING,
    READY,
    UPDATE,
    CustomResourceInvocation,
    NodeSpec,
    StackNode,
)

Engine = Callable[[NodeSpec], dict[str, str]]


@dataclass
class DeploymentReport:
    ready: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False
    duration_ms: int = 0
    # Nodes still running on a worker when the deployment gave up on them.
    abandoned: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled

    def to_json(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "outcome": "success" if self.ok else ("cancelled" if self.cancelled else "partial_failure"),
            "ready": list(self.ready),
            "failed": [{"node": nid, "reason": reason} for nid, reason in self.failed.items()],
            "abandoned": list(self.abandoned),
            "durationMs": self.duration_ms,
        }


class Provisioner:
    """Runs a deployment plan rank by rank against an external engine.

    Nodes of one rank are provisioned concurrently; the next rank starts only
    after the whole rank has settled. A node whose upstream failed is failed
    without being attempted, independent branches keep going.

    Engine calls cannot be interrupted. On a deployment timeout the pending
    cross-region reads stop at their next wait, but an engine call that is
    already running keeps its worker thread until it returns. Nodes still
    running at that point are listed in `DeploymentReport.abandoned`, and
    whatever they produce later is discarded.
    """

    def __init__(
        self,
        engine: Engine,
        reader: CrossRegionParameterReader,
        *,
        store: Any = None,
        max_workers: int = 4,
        deployment_timeout: float = 900.0,
        teardown_engine: Callable[[StackNode], None] | None = None,
    ) -> None:
        self.engine = engine
        self.reader = reader
        self.store = store if store is not None else reader.store
        self.max_workers = max(1, int(max_workers))
        self.deployment_timeout = deployment_timeout
        self.teardown_engine = teardown_engine
        self._lock = threading.Lock()

    def run(self, plan: DeploymentPlan, *, cancel: threading.Event | None = None) -> DeploymentReport:
        cancel = cancel or threading.Event()
        report = DeploymentReport()
        start = time.monotonic()
        deadline = start + self.deployment_timeout
        log_event("deployment_start", ranks=len(plan.ranks), nodes=len(plan.order))

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="provision")
        try:
            for rank_index, rank in enumerate(plan.ranks):
                if cancel.is_set():
                    for node in rank:
                        self._fail(node, "deployment cancelled", report)
                    continue
                futures = {
                    executor.submit(self._provision_node, plan, node, cancel, deadline, report): node
                    for node in rank
                }
                remaining = max(deadline - time.monotonic(), 0.0)
                done, not_done = wait(futures, timeout=remaining, return_when=ALL_COMPLETED)
                for future in done:
                    exc = future.exception()
                    if exc is not None:
                        self._fail(futures[future], f"provisioning crashed: {exc}", report)
                if not_done:
                    cancel.set()
                    for future in not_done:
                        if not future.cancel():
                            report.abandoned.append(futures[future].id)
                        self._fail(futures[future], "deployment timed out", report)
                log_event(
                    "rank_settled",
                    rank=rank_index,
                    nodes=[node.id for node in rank],
                    timed_out=[futures[f].id for f in not_done],
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        report.cancelled = cancel.is_set()
        report.duration_ms = int((time.monotonic() - start) * 1000)
        log_event("deployment_finished", **report.to_json())
        return report

    def _fail(self, node: StackNode, reason: str, report: DeploymentReport) -> None:
        with self._lock:
            if node.state in (READY, FAILED):
                return
            node.state = FAILED
            report.failed[node.id] = reason
        log_event("node_failed", node=node.id, reason=reason)

    def _blocking_upstream(self, plan: DeploymentPlan, node: StackNode) -> str | None:
        for source_id in plan.dependencies(node.id):
            if plan.node(source_id).state != READY:
                return source_id
        return None

    def _provision_node(
        self,
        plan: DeploymentPlan,
        node: StackNode,
        cancel: threading.Event,
        deadline: float,
        report: DeploymentReport,
    ) -> None:
        blocked_by = self._blocking_upstream(plan, node)
        if blocked_by is not None:
            self._fail(node, f"blocked by failed dependency {blocked_by}", report)
            return

        with self._lock:
            node.state = PROVISIONING
        start = time.time()
        try:
            inputs = {
                name: plan.node(ref.source_node_id).output(ref.output_name) or ""
                for name, ref in node.inputs.items()
            }
            parameters = self._resolve_parameters(node, cancel, deadline)
            produced = self.engine(
                NodeSpec(
                    node_id=node.id,
                    inputs=inputs,
                    parameters=parameters,
                    resources=tuple(node.resources),
                    region=node.region,
                )
            ) or {}
            missing = [name for name in node.outputs if name not in produced]
            if missing:
                raise NodeStateError(f"engine did not produce declared output(s): {', '.join(missing)}")
            with self._lock:
                if node.state != PROVISIONING:
                    return
                for name in node.outputs:
                    node.set_output(name, str(produced[name]))
            for output_name, target in node.publishes.items():
                self.store.put(target.region, target.name, node.output(output_name) or "")
        except DeploymentCancelled as e:
            self._fail(node, f"deployment cancelled: {e}", report)
            return
        except DeployError as e:
            self._fail(node, str(e), report)
            return
        except Exception as e:
            self._fail(node, f"engine error: {e}", report)
            return

        with self._lock:
            if node.state != PROVISIONING:
                return
            node.state = READY
            report.ready.append(node.id)
        log_event("node_ready", node=node.id, duration_ms=int((time.time() - start) * 1000))

    def _resolve_parameters(
        self,
        node: StackNode,
        cancel: threading.Event,
        deadline: float,
    ) -> dict[str, str]:
        values: dict[str, str] = {}
        for name, ref in node.parameters.items():
            invocation = node.invocations.get(name)
            if invocation is None:
                invocation = CustomResourceInvocation(action=CREATE, parameter_ref=ref)
                node.invocations[name] = invocation
            elif invocation.last_result is not None:
                invocation.action = UPDATE
            values[name] = self.reader.resolve(ref, invocation, cancel=cancel, deadline=deadline)
        return values

    def teardown(self, plan: DeploymentPlan) -> list[str]:
        torn_down: list[str] = []
        for node in reversed(plan.order):
            for name, invocation in list(node.invocations.items()):
                invocation.action = DELETE
                self.reader.resolve(invocation.parameter_ref, invocation)
                del node.invocations[name]
            if self.teardown_engine is not None:
                self.teardown_engine(node)
            node.reset()
            torn_down.append(node.id)
            log_event("node_torn_down", node=node.id)
        return torn_down
