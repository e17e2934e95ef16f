"""
Refresh-scoped tracing for the StayScout location engine.

One TraceContext follows one refresh run. It collects a StageRecord per
stage (listings, amenities, scoring, context) and an APICallRecord per
outbound HTTP call, then logs a one-line summary when the run ends.

The active trace and the active stage live in ContextVars. Each refresh
runs as its own asyncio task and stages run concurrently as sibling
tasks; asyncio.to_thread copies the caller's context into the worker,
so an HTTP client running off-loop still attributes its calls to the
stage that issued them.

Clients look the trace up themselves:

    trace = get_trace()
    if trace:
        trace.record_api_call("overpass", url, elapsed_ms, 200, "OK")
"""

import logging
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_active_trace: ContextVar[Optional["TraceContext"]] = ContextVar(
    "stayscout_trace", default=None
)
_active_stage: ContextVar[str] = ContextVar("stayscout_trace_stage", default="")


@dataclass(frozen=True)
class APICallRecord:
    service: str
    endpoint: str
    elapsed_ms: int
    status_code: int
    provider_status: str = ""
    stage: str = ""


@dataclass(frozen=True)
class StageRecord:
    stage_name: str
    elapsed_ms: int
    api_calls_made: int = 0
    skipped: bool = False
    error_class: str = ""
    error_message: str = ""

    @property
    def outcome(self) -> str:
        if self.skipped:
            return "SKIP"
        return "ERR" if self.error_class else "OK"


def _final_outcome(stages: List[StageRecord]) -> str:
    labels = {s.outcome for s in stages}
    if "OK" not in labels:
        return "error" if "ERR" in labels else "empty"
    return "success" if labels == {"OK"} else "partial"


@dataclass
class TraceContext:
    """Timing data for a single refresh run."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)

    def start_stage(self, name: str) -> None:
        _active_stage.set(name)

    def end_stage(self) -> None:
        _active_stage.set("")

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        skipped: bool = False,
        error_class: str = "",
        error_message: str = "",
    ) -> StageRecord:
        record = StageRecord(
            stage_name=stage_name,
            elapsed_ms=round((end_ts - start_ts) * 1000),
            api_calls_made=sum(c.stage == stage_name for c in self.api_calls),
            skipped=skipped,
            error_class=error_class,
            error_message=error_message,
        )
        self.stages.append(record)
        logger.info(
            "  [stage] trace=%s %s %s %dms api_calls=%d%s",
            self.trace_id, stage_name, record.outcome, record.elapsed_ms,
            record.api_calls_made,
            f" err={error_class}: {error_message}" if error_class else "",
        )
        return record

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
        stage: Optional[str] = None,
    ) -> None:
        """Attribute a call to ``stage``, or to the stage active in this context."""
        if stage is None:
            stage = _active_stage.get()
        self.api_calls.append(
            APICallRecord(service, endpoint, elapsed_ms, status_code, provider_status, stage)
        )
        logger.info(
            "  [api] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id, stage or "-", service, endpoint,
            elapsed_ms, status_code, provider_status,
        )

    def summary_dict(self) -> Dict[str, Any]:
        by_outcome = {"OK": 0, "SKIP": 0, "ERR": 0}
        for stage in self.stages:
            by_outcome[stage.outcome] += 1
        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": int((time.time() - self.request_start) * 1000),
            "total_api_calls": len(self.api_calls),
            "stages_completed": by_outcome["OK"],
            "stages_skipped": by_outcome["SKIP"],
            "stages_errored": by_outcome["ERR"],
            "final_outcome": _final_outcome(self.stages),
        }

    def log_summary(self) -> None:
        summary = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%(trace_id)s total_ms=%(total_elapsed_ms)d "
            "api_calls=%(total_api_calls)d completed=%(stages_completed)d "
            "skipped=%(stages_skipped)d errored=%(stages_errored)d "
            "outcome=%(final_outcome)s",
            summary,
        )


def get_trace() -> Optional[TraceContext]:
    return _active_trace.get()


def set_trace(ctx: Optional[TraceContext]) -> None:
    _active_trace.set(ctx)


def clear_trace() -> None:
    _active_trace.set(None)
