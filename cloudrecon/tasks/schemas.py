"""Per-task-type parameter schemas.

Parameters travel and are stored as an opaque JSON object string; these
models give each task type its required keys when the worker dispatches.
Unknown keys are kept so ``operate`` can forward the full map to adapters.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError

from cloudrecon.db.models import TaskType


class InvalidParametersError(ValueError):
    """Parameters are unusable; ``reason`` is the task failure message."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class _Params(BaseModel):
    model_config = ConfigDict(extra="allow")


class EnumerateParams(_Params):
    resource_type: StrictStr


class EscalateParams(_Params):
    pass


class OperateParams(_Params):
    resource_type: StrictStr
    action: StrictStr
    resource_id: StrictStr


class TakeoverParams(_Params):
    pass


PARAM_MODELS = {
    TaskType.ENUMERATE: EnumerateParams,
    TaskType.ESCALATE: EscalateParams,
    TaskType.OPERATE: OperateParams,
    TaskType.TAKEOVER: TakeoverParams,
}

# failure message when a type's required keys are missing or mistyped
MISSING_KEY_REASONS = {
    TaskType.ENUMERATE: "Invalid resource type",
    TaskType.OPERATE: "Invalid parameters",
}


def parse_params_blob(blob: str) -> Dict[str, Any]:
    """Decode a stored parameters blob; it must be a JSON object."""
    try:
        params = json.loads(blob or "")
    except (TypeError, ValueError) as exc:
        raise InvalidParametersError("Invalid parameters") from exc
    if not isinstance(params, dict):
        raise InvalidParametersError("Invalid parameters")
    return params


def validate_params(task_type: str, params: Dict[str, Any]) -> _Params:
    """Check ``params`` against the schema of ``task_type``.

    Raises:
        KeyError: ``task_type`` has no schema.
        InvalidParametersError: required keys are missing or not strings.
    """
    model = PARAM_MODELS[task_type]
    try:
        return model.model_validate(params)
    except ValidationError as exc:
        raise InvalidParametersError(MISSING_KEY_REASONS.get(task_type, "Invalid parameters")) from exc


def dump_params(params: Dict[str, Any]) -> str:
    return json.dumps(params, ensure_ascii=False, separators=(",", ":"))
