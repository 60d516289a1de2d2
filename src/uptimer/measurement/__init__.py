"""Probes, periodic scheduling and result aggregation."""

from __future__ import annotations

from .models import (
    AUTH_EXPIRED_MESSAGE,
    Probe,
    ProbeOutcome,
    ResultTally,
    RetryPredicate,
    auth_expired,
    never_retry,
)
from .probes import (
    DeployabilityProbe,
    HTTPAvailabilityProbe,
    RecentLogsProbe,
    StreamingLogsProbe,
    SyslogDrainProbe,
    build_http_client,
)
from .results import (
    ProbeVerdict,
    SessionVerdict,
    build_verdict,
    render_summary,
    serialize_verdict,
    summary_line,
    write_result_file,
)
from .scheduler import PeriodicScheduler, SchedulerState

__all__ = [
    "AUTH_EXPIRED_MESSAGE",
    "DeployabilityProbe",
    "HTTPAvailabilityProbe",
    "PeriodicScheduler",
    "Probe",
    "ProbeOutcome",
    "ProbeVerdict",
    "RecentLogsProbe",
    "ResultTally",
    "RetryPredicate",
    "SchedulerState",
    "SessionVerdict",
    "StreamingLogsProbe",
    "SyslogDrainProbe",
    "auth_expired",
    "build_http_client",
    "build_verdict",
    "never_retry",
    "render_summary",
    "serialize_verdict",
    "summary_line",
    "write_result_file",
]
