from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

from clubhouse.domain.models import Organization, User
from clubhouse.persistence.db import SessionLocal
from clubhouse.persistence.repos import users as users_repo
from clubhouse.services.auth.passwords import hash_password
from clubhouse.services.auth.roles import normalize_role


def _build_parser() -> argparse.ArgumentParser:
    # Bootstrap accounts from the shell before any admin exists to call /auth/register.
    parser = argparse.ArgumentParser(description="Create a user, optionally with a new organization")
    parser.add_argument("--organization-id", default=None, help="Existing organization id")
    parser.add_argument("--organization-name", default=None, help="Create an organization with this name")
    parser.add_argument("--organization-slug", default=None, help="Slug for a new organization")
    parser.add_argument("--email", required=True)
    parser.add_argument("--role", default="admin", help="Role: admin|coach|member")
    parser.add_argument("--first-name", default="Club")
    parser.add_argument("--last-name", default="Admin")
    parser.add_argument("--password", default=None, help="Prompted when omitted")
    return parser


async def _create_user(args: argparse.Namespace, password: str) -> int:
    role = normalize_role(args.role)
    async with SessionLocal() as session:
        organization_id = args.organization_id
        if organization_id is None:
            if not args.organization_name:
                print("error=either --organization-id or --organization-name is required", file=sys.stderr)
                return 2
            organization = Organization(
                name=args.organization_name,
                slug=args.organization_slug or args.organization_name.strip().lower().replace(" ", "-"),
            )
            session.add(organization)
            await session.flush()
            organization_id = organization.id
        elif not await users_repo.organization_exists(session, organization_id):
            print(f"error=organization_not_found organization_id={organization_id}", file=sys.stderr)
            return 2

        if await users_repo.email_in_use(session, args.email):
            print("error=email_already_registered", file=sys.stderr)
            return 2
        user = await users_repo.add_user(
            session,
            User(
                organization_id=organization_id,
                email=args.email.strip().lower(),
                password_hash=hash_password(password),
                first_name=args.first_name,
                last_name=args.last_name,
                role=role,
                status="active",
            ),
        )
        await session.commit()
        print(f"organization_id={organization_id}")
        print(f"user_id={user.id}")
        print(f"role={role}")
    return 0


def main() -> None:
    args = _build_parser().parse_args()
    password = args.password or getpass.getpass("Password: ")
    if not password:
        print("error=password_required", file=sys.stderr)
        raise SystemExit(2)
    raise SystemExit(asyncio.run(_create_user(args, password)))


if __name__ == "__main__":
    main()
