from __future__ import annotations

import argparse
import asyncio
import sys

from docgate.domain.access import parse_role
from docgate.persistence.db import SessionLocal
from docgate.services.maintenance import assign_role


def _build_parser() -> argparse.ArgumentParser:
    # Actors are READER on first sign-in; this is the only way to promote them.
    parser = argparse.ArgumentParser(description="Assign a role to an actor by email")
    parser.add_argument("email", help="Verified email the actor signs in with")
    parser.add_argument(
        "role",
        help="READER, REVIEWER, DEPT_ADMIN or GLOBAL_ADMIN",
    )
    parser.add_argument("--department", default=None, help="Department id (DEPT_ADMIN only)")
    return parser


async def _assign(email: str, role: str, department_id: str | None) -> int:
    async with SessionLocal() as session:
        actor = await assign_role(
            session,
            email=email,
            role=parse_role(role),
            department_id=department_id,
        )
    print(f"actor={actor.id} email={actor.email} role={actor.role} department={actor.department_id}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_assign(args.email, args.role, args.department))
    except Exception as exc:  # noqa: BLE001 - surface operator mistakes clearly
        print(f"set_actor_role failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
