"""Analysis summaries computed from the caller's own tasks and results."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session as DBSession

from cloudrecon.cloud.base import ProviderTag
from cloudrecon.core.time import isoformat
from cloudrecon.db.models import Credential, Task, TaskResult, TaskStatus, TaskType

RISK_LEVELS = ("critical", "high", "medium", "low")
RECENT_FINDINGS_LIMIT = 10


def _load(blob: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(blob or "")
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _severity(value: Any, default: str = "medium") -> str:
    level = str(value or "").strip().lower()
    return level if level in RISK_LEVELS else default


def task_stats(db: DBSession, user_id: str) -> Dict[str, Any]:
    counts = dict(
        db.query(Task.status, func.count(Task.id))
        .filter(Task.user_id == user_id)
        .group_by(Task.status)
        .all()
    )
    total = sum(counts.values())
    success = counts.get(TaskStatus.COMPLETED, 0)
    return {
        "total": total,
        "success": success,
        "failed": counts.get(TaskStatus.FAILED, 0),
        "running": counts.get(TaskStatus.RUNNING, 0),
        "pending": counts.get(TaskStatus.PENDING, 0),
        "successRate": (success / total * 100) if total else 0.0,
    }


def _completed_results(db: DBSession, user_id: str, task_types):
    return (
        db.query(Task, TaskResult, Credential.cloud_provider)
        .join(TaskResult, TaskResult.task_id == Task.id)
        .join(Credential, Credential.id == Task.credential_id)
        .filter(
            Task.user_id == user_id,
            Task.status == TaskStatus.COMPLETED,
            Task.task_type.in_(list(task_types)),
            TaskResult.error == "",
        )
    )


def vulnerability_stats(db: DBSession, user_id: str) -> List[Dict[str, Any]]:
    """Escalation findings per provider, bucketed by reported risk level."""
    buckets = {tag: dict.fromkeys(RISK_LEVELS, 0) for tag in ProviderTag.ALL}
    for _task, row, provider in _completed_results(db, user_id, [TaskType.ESCALATE]):
        payload = _load(row.result)
        if payload is None or provider not in buckets:
            continue
        buckets[provider][_severity(payload.get("riskLevel"))] += 1
    return [{"name": tag, **counts} for tag, counts in buckets.items()]


def resource_stats(db: DBSession, user_id: str) -> List[Dict[str, Any]]:
    """Record counts per result key across each credential's latest enumeration."""
    totals: Dict[str, int] = {}
    credential_ids = [cid for (cid,) in db.query(Credential.id).filter(Credential.user_id == user_id)]
    for credential_id in credential_ids:
        latest = (
            db.query(Task)
            .filter(
                Task.user_id == user_id,
                Task.credential_id == credential_id,
                Task.task_type == TaskType.ENUMERATE,
                Task.status == TaskStatus.COMPLETED,
            )
            .order_by(Task.end_time.desc(), Task.created_at.desc())
            .first()
        )
        if latest is None or not latest.results:
            continue
        payload = _load(latest.results[-1].result) or {}
        for key, records in payload.items():
            if key == "errors" or not isinstance(records, list):
                continue
            totals[key] = totals.get(key, 0) + len(records)
    return [{"resource": key, "count": count} for key, count in totals.items()]


def _finding_title(task: Task, payload: Dict[str, Any], provider: str) -> str:
    if task.task_type == TaskType.TAKEOVER:
        return f"{provider} platform takeover attempted"
    paths = payload.get("potentialEscalation") or []
    subject = payload.get("user") or "credential"
    return f"{provider} {subject}: {len(paths)} potential escalation path(s)"


def recent_findings(db: DBSession, user_id: str, limit: int = RECENT_FINDINGS_LIMIT) -> List[Dict[str, Any]]:
    rows = (
        _completed_results(db, user_id, [TaskType.ESCALATE, TaskType.TAKEOVER])
        .order_by(TaskResult.timestamp.desc())
        .limit(limit)
        .all()
    )
    findings = []
    for task, row, provider in rows:
        payload = _load(row.result) or {}
        default = "high" if task.task_type == TaskType.TAKEOVER else "medium"
        findings.append(
            {
                "id": task.id,
                "title": _finding_title(task, payload, provider),
                "severity": _severity(payload.get("riskLevel"), default),
                "cloudProvider": provider,
                "timestamp": isoformat(row.timestamp),
                "status": "open",
            }
        )
    return findings
