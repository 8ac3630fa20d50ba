"""Create the first cloudrecon admin.

    python -m cloudrecon.scripts.create_admin --username admin --email admin@example.com --password 'YourP@ss1'

Does nothing (and exits non-zero) once an admin exists.
"""

from __future__ import annotations

import argparse
import sys

from cloudrecon.auth.bootstrap import ACCOUNT_TAKEN, ADMIN_EXISTS, provision_admin
from cloudrecon.auth.password import validate_password_length
from cloudrecon.db.database import create_schema, get_session_local


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create the first cloudrecon admin user")
    parser.add_argument("--username", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    args = parser.parse_args(argv)

    problem = validate_password_length(args.password)
    if problem:
        sys.exit(f"Error: {problem}")

    create_schema()
    db = get_session_local()()
    try:
        outcome = provision_admin(db, args.username.strip(), args.email.strip(), args.password)
    finally:
        db.close()

    if outcome == ADMIN_EXISTS:
        sys.exit("An admin user already exists. Aborting.")
    if outcome == ACCOUNT_TAKEN:
        sys.exit(f"Username '{args.username}' or email '{args.email}' is already registered.")
    print(f"Admin user '{args.username}' created successfully.")


if __name__ == "__main__":
    main()
