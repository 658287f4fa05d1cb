"""Entry point: python -m broker

Command-line access to the contract broker, operating directly on the
database configured by BROKER_DATABASE_URL.

Usage:
    python -m broker register-service user-service --role provider --version 1.0.0
    python -m broker upload-spec user-service 1.1.0 --role provider --spec-file openapi.yaml
    python -m broker deploy-service user-service 1.1.0 --environment staging
    python -m broker can-i-deploy web-app 2.0.0 --role consumer --environment production
    python -m broker tasks --provider user-service
    python -m broker fixtures approve-all --service user-service --by alice
    python -m broker rebuild-contracts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import yaml

from broker import aggregator, coordinator, directory, fixtures, gate, ledger
from broker.dependency_graph import build_dependency_graph
from src.config import settings
from src.database import async_session, close_db, init_db
from src.errors import BrokerError


def _load_document(path: str | None):
    """Load a spec or package file; YAML parsing also accepts JSON."""
    if not path:
        return None
    return yaml.safe_load(Path(path).read_text())


async def register_service(args) -> int:
    async with async_session() as db:
        service = await directory.register_service(
            db,
            args.name,
            args.role,
            spec_type=args.spec_type,
            description=args.description,
            git_repository_url=args.repo,
        )
        print(f"Registered {service.name} (roles: {', '.join(service.roles)})")
        if args.version:
            version = await directory.upload_spec(
                db,
                args.name,
                args.role,
                args.version,
                spec=_load_document(args.spec_file),
                git_sha=args.git_sha,
                created_by=args.by,
            )
            print(f"  Version {version.version} registered")
    return 0


async def upload_spec(args) -> int:
    async with async_session() as db:
        version = await directory.upload_spec(
            db,
            args.name,
            args.role,
            args.version,
            spec=_load_document(args.spec_file),
            git_sha=args.git_sha,
            package_json=_load_document(args.package_file),
            created_by=args.by,
            spec_type=args.spec_type,
        )
    print(f"Uploaded {args.name}@{version.version} ({version.role})")
    return 0


async def deploy_service(args) -> int:
    async with async_session() as db:
        deployment = await ledger.record_deployment(
            db,
            args.name,
            args.version,
            args.environment,
            deployed_by=args.by,
            git_sha=args.git_sha,
            status=args.status,
            failure_reason=args.reason,
        )
    if deployment.active:
        print(f"Deployed {args.name}@{args.version} to {args.environment}")
    else:
        print(f"Recorded failed deployment of {args.name}@{args.version} to {args.environment}")
    return 0


async def can_i_deploy(args) -> int:
    async with async_session() as db:
        decision = await gate.can_deploy(
            db,
            args.name,
            args.version,
            args.role,
            args.environment,
            semver_compatibility=args.semver,
        )
    if args.json:
        print(json.dumps(decision.to_dict(), indent=2))
    else:
        print(("ALLOWED" if decision.allowed else "BLOCKED") + f": {decision.message}")
        for check in decision.providers + decision.consumers:
            version = check.version or "-"
            print(f"  {check.service}@{version}: {check.status}")
        for issue in decision.issues:
            print(f"  ! {issue}")
    return 0 if decision.allowed else 1


async def list_tasks(args) -> int:
    async with async_session() as db:
        tasks = await coordinator.list_pending_tasks(
            db, provider=args.provider, consumer=args.consumer
        )
    if not tasks:
        print("No pending verification tasks.")
        return 0
    for task in tasks:
        print(
            f"{task.id}  {task.consumer}@{task.consumer_version} -> "
            f"{task.provider}@{task.provider_version}  ({len(task.interactions)} interaction(s))"
        )
    return 0


async def fixtures_command(args) -> int:
    async with async_session() as db:
        if args.fixtures_command == "list":
            items = await fixtures.list_fixtures(
                db,
                service=args.service,
                operation=args.operation,
                service_version=args.service_version,
                status=args.status,
            )
            for f in items:
                print(
                    f"{f.id}  {f.service} {f.operation}  [{f.status}] "
                    f"priority={f.priority} versions={','.join(f.service_versions)}"
                )
            print(f"{len(items)} fixture(s)")
            return 0

        if args.fixtures_command == "approve-all":
            report = await fixtures.approve_all(
                db, args.by, fixture_ids=args.ids or None, service=args.service
            )
            failed = [r for r in report if not r["ok"]]
            for r in report:
                marker = "ok" if r["ok"] else f"{r['error']}: {r['message']}"
                print(f"  {r['fixture_id']}: {marker}")
            print(f"Approved {len(report) - len(failed)} of {len(report)} fixture(s)")
            return 1 if failed else 0

        action = {
            "approve": fixtures.approve,
            "reject": fixtures.reject,
            "revoke": fixtures.revoke,
        }[args.fixtures_command]
        fixture = await action(db, args.id, args.by, notes=args.notes)
        print(f"Fixture {fixture.id} is now {fixture.status}")
    return 0


async def rebuild_contracts(args) -> int:
    async with async_session() as db:
        summary = await aggregator.rebuild_contracts(db)
    print(f"Rebuilt {summary['contracts']} contract(s); corrected {summary['corrected']}")
    return 0


async def stale_contracts(args) -> int:
    async with async_session() as db:
        stale = await aggregator.propose_archival(db, stale_days=args.days)
    for contract in stale:
        print(
            f"{contract.id}  {contract.consumer_name} -> {contract.provider_name}  "
            f"last seen {contract.last_seen:%Y-%m-%d}"
        )
    print(f"{len(stale)} contract(s) proposed for archival")
    return 0


async def deploy_order(args) -> int:
    async with async_session() as db:
        graph = await build_dependency_graph(db)
    for idx, wave in enumerate(graph.topological_sort()):
        print(f"Wave {idx}: {', '.join(wave)}")
    return 0


COMMANDS = {
    "register-service": register_service,
    "upload-spec": upload_spec,
    "deploy-service": deploy_service,
    "can-i-deploy": can_i_deploy,
    "tasks": list_tasks,
    "fixtures": fixtures_command,
    "rebuild-contracts": rebuild_contracts,
    "stale-contracts": stale_contracts,
    "deploy-order": deploy_order,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="broker", description="Contract broker")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("register-service", help="Register a service or add a role")
    p.add_argument("name")
    p.add_argument("--role", required=True, choices=["consumer", "provider"])
    p.add_argument("--version", help="Also register this version")
    p.add_argument("--spec-type", default=None)
    p.add_argument("--spec-file")
    p.add_argument("--description")
    p.add_argument("--repo", help="Git repository URL")
    p.add_argument("--git-sha")
    p.add_argument("--by", default="cli")

    p = sub.add_parser("upload-spec", help="Publish an immutable service version")
    p.add_argument("name")
    p.add_argument("version")
    p.add_argument("--role", required=True, choices=["consumer", "provider"])
    p.add_argument("--spec-file", help="OpenAPI/AsyncAPI document (YAML or JSON)")
    p.add_argument("--package-file", help="package.json or similar metadata")
    p.add_argument("--spec-type", default=None)
    p.add_argument("--git-sha")
    p.add_argument("--by", default="cli")

    p = sub.add_parser("deploy-service", help="Record a deployment")
    p.add_argument("name")
    p.add_argument("version")
    p.add_argument("--environment", required=True)
    p.add_argument("--status", default="successful", choices=["successful", "failed"])
    p.add_argument("--reason", help="Failure reason for blocked deployments")
    p.add_argument("--git-sha")
    p.add_argument("--by", default="cli")

    p = sub.add_parser("can-i-deploy", help="Check deployment safety (exit 1 when blocked)")
    p.add_argument("name")
    p.add_argument("version")
    p.add_argument("--role", required=True, choices=["consumer", "provider"])
    p.add_argument("--environment", required=True)
    p.add_argument("--semver", default="none", choices=list(gate.SEMVER_MODES))
    p.add_argument("--json", action="store_true", help="Print the full decision as JSON")

    p = sub.add_parser("tasks", help="List pending verification tasks")
    p.add_argument("--provider")
    p.add_argument("--consumer")

    p = sub.add_parser("fixtures", help="Manage fixture approvals")
    fsub = p.add_subparsers(dest="fixtures_command", required=True)
    fp = fsub.add_parser("list")
    fp.add_argument("--service")
    fp.add_argument("--operation")
    fp.add_argument("--service-version")
    fp.add_argument("--status", choices=["draft", "approved", "rejected"])
    for name in ("approve", "reject", "revoke"):
        fp = fsub.add_parser(name)
        fp.add_argument("id")
        fp.add_argument("--by", required=True)
        fp.add_argument("--notes")
    fp = fsub.add_parser("approve-all")
    fp.add_argument("ids", nargs="*")
    fp.add_argument("--service")
    fp.add_argument("--by", required=True)

    sub.add_parser("rebuild-contracts", help="Recompute contract rollups from interactions")

    p = sub.add_parser("stale-contracts", help="List contracts proposed for archival")
    p.add_argument("--days", type=int, default=None)

    sub.add_parser("deploy-order", help="Print deployment waves from the dependency graph")

    return parser


async def main(args) -> int:
    await init_db()
    try:
        return await COMMANDS[args.command](args)
    except BrokerError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if e.detail != e.message:
            print(f"  {e.detail}", file=sys.stderr)
        return 2
    finally:
        await close_db()


def cli(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    return asyncio.run(main(args))


if __name__ == "__main__":
    sys.exit(cli())
