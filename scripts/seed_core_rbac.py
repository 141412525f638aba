from __future__ import annotations

import argparse
import asyncio
import sys

from paritymark.persistence.db import SessionLocal
from paritymark.services.identity import CORE_ROLE_NAMES, ensure_core_rbac, grant_role


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed the core roles and permissions")
    parser.add_argument("--grant", default=None, help="External id to receive --role")
    parser.add_argument("--role", default=None, choices=sorted(CORE_ROLE_NAMES), help="Core role to grant")
    parser.add_argument("--display-name", default=None, help="Display name when the user is created")
    return parser


async def _seed(args: argparse.Namespace) -> int:
    if bool(args.grant) != bool(args.role):
        raise ValueError("--grant and --role must be given together")

    async with SessionLocal() as session:
        roles = await ensure_core_rbac(session)
        if args.grant:
            user = await grant_role(
                session,
                external_id=args.grant,
                role_key=args.role,
                display_name=args.display_name,
            )
        await session.commit()

    print("Core RBAC seeded:")
    for key in sorted(roles):
        print(f"  role: {key}")
    if args.grant:
        print(f"  granted {args.role} to {args.grant} (user_id={user.id})")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_seed(args))
    except Exception as exc:  # noqa: BLE001 - surface seeding failures clearly
        print(f"seed_core_rbac failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
