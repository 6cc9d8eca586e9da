"""Cross-region parameter reads performed during a node's own provisioning.

The provisioning substrate resolves references only inside one region and
account, so values published elsewhere (the API certificate ARN lives in
us-east-1) are read explicitly here, as a blocking step of the consuming
node. Reads are side-effect free: retrying or re-running a pass never
changes the remote store.
"""

from __future__ import annotations

import threading
import time

from .errors import (
    TIMEOUT,
    DeploymentCancelled,
    ParameterStoreError,
    ResolutionError,
)
from .logs import log_event
from .model import CREATE, DELETE, UPDATE, CustomResourceInvocation, ParameterRef

MAX_ATTEMPTS_CAP = 5


def _wait(cancel: threading.Event, delay: float) -> bool:
    return cancel.wait(delay)


def backoff_delays(attempts: int, *, base_delay: float, max_delay: float) -> list[float]:
    """Delays slept between consecutive attempts (one fewer than attempts)."""
    return [min(base_delay * (2 ** n), max_delay) for n in range(max(attempts - 1, 0))]


class CrossRegionParameterReader:
    def __init__(
        self,
        store,
        *,
        max_attempts: int = MAX_ATTEMPTS_CAP,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
    ) -> None:
        self.store = store
        self.max_attempts = max(1, min(int(max_attempts), MAX_ATTEMPTS_CAP))
        self.base_delay = base_delay
        self.max_delay = max_delay

    @classmethod
    def from_config(cls, config, store) -> "CrossRegionParameterReader":
        return cls(
            store,
            max_attempts=config.max_attempts,
            base_delay=config.base_backoff,
            max_delay=config.max_backoff,
        )

    def delays(self) -> list[float]:
        return backoff_delays(self.max_attempts, base_delay=self.base_delay, max_delay=self.max_delay)

    def resolve(
        self,
        ref: ParameterRef,
        previous: CustomResourceInvocation | None = None,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> str:
        invocation = previous
        if invocation is None:
            invocation = CustomResourceInvocation(action=CREATE, parameter_ref=ref)

        if invocation.action == DELETE:
            # Nothing was written remotely, teardown only has to report success.
            log_event(
                "cross_region_delete",
                region=invocation.parameter_ref.region,
                name=invocation.parameter_ref.name,
            )
            return invocation.last_result or ""

        if invocation.parameter_ref != ref:
            invocation.parameter_ref = ref
            invocation.action = UPDATE

        value = self._read_with_retry(invocation, cancel or threading.Event(), deadline)
        invocation.last_result = value
        return value

    def _read_with_retry(
        self,
        invocation: CustomResourceInvocation,
        cancel: threading.Event,
        deadline: float | None,
    ) -> str:
        ref = invocation.parameter_ref
        delays = self.delays()
        invocation.attempt = 0
        for attempt in range(1, self.max_attempts + 1):
            if cancel.is_set():
                raise DeploymentCancelled(
                    f"cross-region read of {ref.name!r} cancelled before attempt {attempt}"
                )
            invocation.attempt = attempt
            start = time.time()
            try:
                value = self.store.get(ref.region, ref.name)
            except ParameterStoreError as e:
                log = {
                    "region": ref.region,
                    "name": ref.name,
                    "action": invocation.action,
                    "attempt": attempt,
                    "kind": e.kind,
                    "duration_ms": int((time.time() - start) * 1000),
                }
                err = ResolutionError(e.kind, ref=ref, attempts=attempt, message=str(e))
                if not err.retryable or attempt == self.max_attempts:
                    log_event("cross_region_read_failed", **log)
                    raise err from e
                delay = delays[attempt - 1]
                if deadline is not None and time.monotonic() + delay >= deadline:
                    log_event("cross_region_read_failed", outcome="deadline", **log)
                    raise ResolutionError(
                        TIMEOUT,
                        ref=ref,
                        attempts=attempt,
                        message="retry budget exceeds the deployment deadline",
                    ) from e
                log_event("cross_region_read_retry", delay_s=delay, **log)
                if _wait(cancel, delay):
                    raise DeploymentCancelled(
                        f"cross-region read of {ref.name!r} cancelled after attempt {attempt}"
                    ) from e
                continue
            log_event(
                "cross_region_read",
                region=ref.region,
                name=ref.name,
                action=invocation.action,
                attempt=attempt,
                duration_ms=int((time.time() - start) * 1000),
            )
            return value
        # The loop either returns or raises on its last attempt.
        raise AssertionError("unreachable")
