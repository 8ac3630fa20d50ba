"""Credential management scoped to the owning user.

The secret key is encrypted on the way in and never leaves this module in
any serialized form.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session as DBSession

from cloudrecon.cloud.factory import is_supported_provider
from cloudrecon.core.crypto import encrypt_secret
from cloudrecon.core.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    UnsupportedProviderError,
)
from cloudrecon.core.logging import get_logger
from cloudrecon.core.time import isoformat
from cloudrecon.db.models import Credential, Task, TaskStatus, User

logger = get_logger(__name__)

# fields that may be cleared with an empty string on update
CLEARABLE_FIELDS = ("description", "region")
REQUIRED_FIELDS = ("cloud_provider", "access_key", "secret_key", "name")


def serialize_credential(credential: Credential) -> Dict[str, Any]:
    return {
        "id": credential.id,
        "user_id": credential.user_id,
        "cloud_provider": credential.cloud_provider,
        "access_key": credential.access_key,
        "region": credential.region or "",
        "name": credential.name,
        "description": credential.description or "",
        "created_at": isoformat(credential.created_at),
        "updated_at": isoformat(credential.updated_at),
    }


def _check_provider(tag: str) -> str:
    tag = (tag or "").strip()
    if not is_supported_provider(tag):
        raise UnsupportedProviderError(tag)
    return tag


def list_credentials(db: DBSession, user: User) -> List[Credential]:
    return (
        db.query(Credential)
        .filter(Credential.user_id == user.id)
        .order_by(Credential.created_at.desc())
        .all()
    )


def get_credential(db: DBSession, user: User, credential_id: str) -> Credential:
    credential = (
        db.query(Credential)
        .filter(Credential.id == credential_id, Credential.user_id == user.id)
        .first()
    )
    if credential is None:
        raise NotFoundError("Credential not found")
    return credential


def create_credential(
    db: DBSession,
    user: User,
    *,
    cloud_provider: str,
    access_key: str,
    secret_key: str,
    name: str,
    description: str = "",
    region: str = "",
) -> Credential:
    for field_name, value in (
        ("access_key", access_key),
        ("secret_key", secret_key),
        ("name", name),
    ):
        if not (value or "").strip():
            raise BadRequestError(f"{field_name} is required")

    credential = Credential(
        user_id=user.id,
        cloud_provider=_check_provider(cloud_provider),
        access_key=access_key.strip(),
        secret_key_encrypted=encrypt_secret(secret_key.strip()),
        region=(region or "").strip(),
        name=name.strip(),
        description=description or "",
    )
    db.add(credential)
    db.commit()
    db.refresh(credential)
    logger.info(
        "Credential created",
        data={"credential_id": credential.id, "cloud_provider": credential.cloud_provider},
    )
    return credential


def update_credential(
    db: DBSession,
    user: User,
    credential_id: str,
    changes: Dict[str, Optional[str]],
) -> Credential:
    """Apply the fields present in ``changes``.

    Absent (or None) fields are left alone. ``description`` and ``region``
    may be cleared with an empty string; the other fields may not.
    """
    credential = get_credential(db, user, credential_id)

    for field_name in REQUIRED_FIELDS:
        value = changes.get(field_name)
        if value is None:
            continue
        if not value.strip():
            raise BadRequestError(f"{field_name} cannot be empty")
        if field_name == "cloud_provider":
            credential.cloud_provider = _check_provider(value)
        elif field_name == "secret_key":
            credential.secret_key_encrypted = encrypt_secret(value.strip())
        else:
            setattr(credential, field_name, value.strip())

    for field_name in CLEARABLE_FIELDS:
        value = changes.get(field_name)
        if value is not None:
            setattr(credential, field_name, value.strip() if field_name == "region" else value)

    db.commit()
    db.refresh(credential)
    logger.info("Credential updated", data={"credential_id": credential.id})
    return credential


def delete_credential(db: DBSession, user: User, credential_id: str) -> None:
    """Delete a credential together with its finished tasks and their results.

    Raises:
        ConflictError: a pending or running task still references it.
    """
    credential = get_credential(db, user, credential_id)

    active = (
        db.query(Task)
        .filter(
            Task.credential_id == credential.id,
            Task.status.in_([TaskStatus.PENDING, TaskStatus.RUNNING]),
        )
        .count()
    )
    if active:
        raise ConflictError(f"Credential is in use by {active} unfinished task(s)")

    db.delete(credential)
    db.commit()
    logger.info("Credential deleted", data={"credential_id": credential_id})
