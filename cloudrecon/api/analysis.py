"""Analysis endpoints summarising the caller's task history."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session as DBSession

from cloudrecon.auth.dependencies import get_current_user
from cloudrecon.db import get_db
from cloudrecon.db.models import User
from cloudrecon.services import stats_service

router = APIRouter(prefix="/api/analysis", tags=["analysis"])


@router.get("/task-stats")
async def get_task_stats(
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return stats_service.task_stats(db, current_user.id)


@router.get("/vulnerability-stats")
async def get_vulnerability_stats(
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    return stats_service.vulnerability_stats(db, current_user.id)


@router.get("/resource-stats")
async def get_resource_stats(
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    return stats_service.resource_stats(db, current_user.id)


@router.get("/recent-findings")
async def get_recent_findings(
    db: DBSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    return stats_service.recent_findings(db, current_user.id)
