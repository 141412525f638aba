from __future__ import annotations

import argparse
import asyncio
import sys

from paritymark.persistence.db import SessionLocal
from paritymark.services import config_versions


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create or archive a deployment")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Create a deployment")
    create.add_argument("code", help="Deployment code, e.g. D1")
    create.add_argument("--name", default=None, help="Display name (defaults to the code)")

    archive = subparsers.add_parser("archive", help="Archive a live deployment")
    archive.add_argument("code", help="Deployment code")

    versions = subparsers.add_parser("versions", help="List config versions, newest first")
    versions.add_argument("code", help="Deployment code")
    return parser


async def _run(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        if args.command == "create":
            deployment = await config_versions.create_deployment(session, code=args.code, name=args.name)
            print(f"deployment {deployment.code} id={deployment.id}")
        elif args.command == "archive":
            deployment = await config_versions.archive_deployment(session, code=args.code)
            print(f"deployment {deployment.code} archived_at={deployment.archived_at.isoformat()}")
        else:
            deployment, rows = await config_versions.list_versions(session, deployment_code=args.code)
            for version in rows:
                print(f"{deployment.code} v{version.version_number} {version.status}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - report lifecycle errors with a non-zero exit
        print(f"manage_deployment failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
