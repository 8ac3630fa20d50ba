"""First-admin provisioning, shared by startup bootstrap and the CLI."""

import sys

from sqlalchemy.orm import Session

from cloudrecon.auth.password import hash_password
from cloudrecon.config import Settings
from cloudrecon.core.logging import get_logger
from cloudrecon.db.database import get_session_local
from cloudrecon.db.models import User

logger = get_logger(__name__)

ADMIN_CREATED = "created"
ADMIN_EXISTS = "admin_exists"
ACCOUNT_TAKEN = "account_taken"


def provision_admin(db: Session, username: str, email: str, password: str) -> str:
    """Create the operator admin unless one is already there.

    Returns one of ``ADMIN_CREATED``, ``ADMIN_EXISTS`` or ``ACCOUNT_TAKEN``
    (the username or email belongs to an ordinary operator).
    """
    if db.query(User.id).filter(User.role == "admin").first() is not None:
        return ADMIN_EXISTS

    taken = db.query(User.id).filter((User.username == username) | (User.email == email)).first()
    if taken is not None:
        return ACCOUNT_TAKEN

    db.add(
        User(
            email=email,
            username=username,
            hashed_password=hash_password(password),
            role="admin",
            is_active=True,
        )
    )
    db.commit()
    return ADMIN_CREATED


def ensure_bootstrap_admin(settings: Settings) -> None:
    """Provision the admin named by ``BOOTSTRAP_ADMIN_*`` at startup.

    Exits when bootstrap is left enabled in production.
    """
    if not settings.bootstrap_admin_enabled:
        return

    if settings.is_production:
        logger.error("Bootstrap admin must be disabled in production; refusing to start")
        sys.exit(1)

    username = (settings.bootstrap_admin_username or "").strip()
    email = (settings.bootstrap_admin_email or "").strip()
    password = settings.bootstrap_admin_password or ""
    if not (username and email and password):
        logger.warning(
            "Bootstrap admin enabled without username, email and password",
            data={"username_set": bool(username), "email_set": bool(email), "password_set": bool(password)},
        )
        return

    db = get_session_local()()
    try:
        outcome = provision_admin(db, username, email, password)
    finally:
        db.close()

    if outcome == ADMIN_CREATED:
        logger.warning("Bootstrap admin created", data={"username": username})
    elif outcome == ACCOUNT_TAKEN:
        logger.warning("Bootstrap admin skipped; account name in use", data={"username": username, "email": email})
