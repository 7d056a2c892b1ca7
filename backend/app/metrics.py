# backend/app/metrics.py
from prometheus_client import Counter

from app.models.approval import RequestType, StepStatus, ApproverKind

# === Core metrics (definitions ONLY here) ===
approval_initiations_total = Counter(
    "approval_initiations_total", "Requests entering approval", ["request_type", "outcome"]
)

approval_decisions_total = Counter(
    "approval_decisions_total", "Step decisions applied", ["request_type", "outcome", "path"]
)

approval_conflicts_total = Counter(
    "approval_conflicts_total", "Decisions that lost a race or hit a decided step", ["flow"]
)

approval_steps_skipped_total = Counter(
    "approval_steps_skipped_total", "Configured steps skipped at initiation", ["approver"]
)

correction_decisions_total = Counter(
    "correction_decisions_total", "Attendance correction reviews", ["stage", "outcome"]
)

notifications_total = Counter(
    "notifications_total", "Notification deliveries", ["result"]
)

def init_metrics_zero():
    # create label combos at 0 so Grafana never sees “no data”
    outcomes = [StepStatus.APPROVED.value, StepStatus.REJECTED.value]
    for rt in RequestType:
        for o in ("pending", "auto_approved"):
            approval_initiations_total.labels(request_type=rt.value, outcome=o).inc(0)
        for o in outcomes:
            for path in ("step", "admin", "email"):
                approval_decisions_total.labels(request_type=rt.value, outcome=o, path=path).inc(0)
    for flow in ("step", "admin", "correction", "token"):
        approval_conflicts_total.labels(flow=flow).inc(0)
    for kind in ApproverKind:
        approval_steps_skipped_total.labels(approver=kind.value).inc(0)
    for stage in ("manager", "hr"):
        for o in outcomes:
            correction_decisions_total.labels(stage=stage, outcome=o).inc(0)
    for r in ("sent", "failed", "skipped"):
        notifications_total.labels(result=r).inc(0)
