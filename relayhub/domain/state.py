from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


class PipelineState(str, Enum):
    RESOLVING = "RESOLVING"
    ENABLEMENT_CHECK = "ENABLEMENT_CHECK"
    CREDIT_CHECK = "CREDIT_CHECK"
    CONTEXT_BUILD = "CONTEXT_BUILD"
    COMPLETION = "COMPLETION"
    DISPATCH = "DISPATCH"
    LOG = "LOG"
    METER_UPDATE = "METER_UPDATE"
    DONE = "DONE"
    DROPPED = "DROPPED"


# Stable drop reasons; the widget route maps these onto HTTP statuses.
REASON_NOT_FOUND = "not_found"
REASON_DISABLED = "disabled"
REASON_ORIGIN_REJECTED = "origin_rejected"
REASON_NO_CREDITS = "no_credits"
REASON_MISSING_PROVIDER_KEY = "missing_provider_key"
REASON_MISSING_CHANNEL_TOKEN = "missing_channel_token"
REASON_STORE_ERROR = "store_error"
REASON_COMPLETION_FAILED = "completion_failed"
REASON_DISPATCH_FAILED = "dispatch_failed"
REASON_UNEXPECTED = "unexpected_error"


@dataclass(frozen=True)
class StepResult:
    # Outcome of a single transition: continue, drop quietly, or fail with a cause.
    kind: Literal["proceed", "drop", "fail"]
    reason: str | None = None
    error: BaseException | None = None

    @classmethod
    def proceed(cls) -> "StepResult":
        return cls(kind="proceed")

    @classmethod
    def drop(cls, reason: str) -> "StepResult":
        return cls(kind="drop", reason=reason)

    @classmethod
    def fail(cls, reason: str, error: BaseException | None = None) -> "StepResult":
        return cls(kind="fail", reason=reason, error=error)

    @property
    def proceeds(self) -> bool:
        return self.kind == "proceed"


@dataclass
class PipelineRun:
    channel: str
    state: PipelineState = PipelineState.RESOLVING
    visited: list[PipelineState] = field(default_factory=list)
    reason: str | None = None
    error: BaseException | None = None
    reply: str | None = None
    tenant_id: str | None = None
    tenant_name: str | None = None
    credit_charged: bool = False

    def enter(self, state: PipelineState) -> None:
        self.state = state
        self.visited.append(state)

    @property
    def completed(self) -> bool:
        return self.state == PipelineState.DONE

    @property
    def failed(self) -> bool:
        # Failures carry an error; plain drops (not found, no credits) do not.
        return self.state == PipelineState.DROPPED and self.error is not None
