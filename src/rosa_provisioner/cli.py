"""Command line entry point: ``rosa-provision``.

Usage:
  rosa-provision create --cluster-file cluster.yaml
  rosa-provision create --cluster-file cluster.yaml --dry-run
  rosa-provision plan --cluster-file cluster.yaml
  rosa-provision upgrade-roles --cluster-file cluster.yaml --yes
  rosa-provision delete --cluster my-cluster --delete-identity
  rosa-provision list addons [--cluster my-cluster]
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import sys
from typing import Any, TextIO

import pydantic

from rosa_provisioner import __version__
from rosa_provisioner.addons import list_available_addons, list_cluster_addons
from rosa_provisioner.app import AppContext, build_context
from rosa_provisioner.config import Settings, load_cluster_spec, load_settings
from rosa_provisioner.domain.models import (
    ClusterSpec,
    PlanEntry,
    ProvisioningRun,
    ResourcePlan,
    RunState,
)
from rosa_provisioner.errors import ProvisionerError, RollbackIncomplete, ValidationError
from rosa_provisioner.logging_utils import configure_logging
from rosa_provisioner.orchestrator import RunResult
from rosa_provisioner.request_builder import spec_violations
from rosa_provisioner.rollback import RollbackReport
from rosa_provisioner.utils.serialization import dumps

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_ROLLBACK_INCOMPLETE = 3


class ConsoleReporter:
    """Renders run events as progress lines."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout

    def _write(self, line: str) -> None:
        print(line, file=self._stream, flush=True)

    def stage_changed(self, run: ProvisioningRun, previous: RunState, current: RunState) -> None:
        self._write(f"==> {current.value.replace('_', ' ')}")

    def resource_outcome(self, run: ProvisioningRun, entry: PlanEntry) -> None:
        outcome = entry.outcome.value if entry.outcome else "pending"
        target = entry.identifier or entry.resource.name
        self._write(f"    {entry.logical_name}: {outcome} {target}")

    def poll_progress(self, cluster_id: str, status: str, attempt: int) -> None:
        self._write(f"    cluster {cluster_id} is {status}")

    def rollback_outcome(self, run: ProvisioningRun, report: RollbackReport) -> None:
        for resource in report.deleted:
            self._write(f"    deleted {resource.identifier}")
        for resource in report.failed:
            self._write(f"    FAILED to delete {resource.identifier}")


def _table(headers: list[str], rows: list[list[str]]) -> str:
    widths = [len(header) for header in headers]
    for row in rows:
        widths = [max(width, len(cell)) for width, cell in zip(widths, row)]
    lines = [
        "  ".join(cell.ljust(width) for cell, width in zip(line, widths)).rstrip()
        for line in [headers, *rows]
    ]
    return "\n".join(lines)


def _plan_rows(plan: ResourcePlan) -> list[dict[str, Any]]:
    return [
        {
            "logical_name": entry.logical_name,
            "kind": entry.kind.value,
            "name": entry.resource.name,
            "status": entry.status.value,
            "outcome": entry.outcome.value if entry.outcome else None,
            "identifier": entry.identifier,
            "version": entry.existing.version if entry.existing else None,
        }
        for entry in plan
    ]


def _print_plan(plan: ResourcePlan, output: str) -> None:
    rows = _plan_rows(plan)
    if output == "json":
        print(dumps(rows))
        return
    if not rows:
        print("No identity resources are required.")
        return
    print(
        _table(
            ["RESOURCE", "NAME", "STATUS", "VERSION"],
            [
                [row["logical_name"], row["name"], row["status"], row["version"] or "-"]
                for row in rows
            ],
        )
    )


def _result_payload(result: RunResult) -> dict[str, Any]:
    rollback = result.rollback
    return {
        "run_id": result.run_id,
        "state": result.state.value,
        "cluster_id": result.cluster_id,
        "error": result.error,
        "plan": _plan_rows(result.plan) if result.plan is not None else [],
        "rollback": None
        if rollback is None
        else {
            "deleted": [resource.identifier for resource in rollback.deleted],
            "failed": rollback.failed_identifiers(),
        },
    }


def exit_code_for(result: RunResult) -> int:
    if result.state == RunState.DONE:
        return EXIT_OK
    if result.rollback is not None and not result.rollback.complete:
        return EXIT_ROLLBACK_INCOMPLETE
    if isinstance(result.error, ValidationError):
        return EXIT_USAGE
    return EXIT_FAILED


def _spec_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "name": getattr(args, "name", None),
        "region": getattr(args, "region", None),
        "version": getattr(args, "version", None),
        "replicas": getattr(args, "replicas", None),
    }


def _load_spec(args: argparse.Namespace, settings: Settings) -> ClusterSpec:
    return load_cluster_spec(args.cluster_file, _spec_overrides(args), settings)


@contextlib.contextmanager
def _interrupt_sets(event: asyncio.Event):
    """Route SIGINT to ``event`` so the run can roll back before exiting."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, event.set)
    except (NotImplementedError, RuntimeError):
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _cmd_create(args: argparse.Namespace, ctx: AppContext, spec: ClusterSpec) -> int:
    if args.dry_run:
        plan = await ctx.orchestrator.plan(spec)
        violations = spec_violations(spec, [entry.resource for entry in plan])
        if args.output == "json":
            print(dumps({"plan": _plan_rows(plan), "violations": violations}))
        else:
            _print_plan(plan, args.output)
            for violation in violations:
                print(f"invalid: {violation}")
        return EXIT_USAGE if violations else EXIT_OK

    cancel_event = asyncio.Event()
    with _interrupt_sets(cancel_event):
        result = await ctx.orchestrator.run(spec, cancel_event=cancel_event)

    if args.output == "json":
        print(dumps(_result_payload(result)))
    elif result.succeeded:
        print(f"Cluster {spec.name} is ready (id {result.cluster_id}).")
    else:
        print(f"Cluster {spec.name} was not created: {result.error}", file=sys.stderr)
        if result.rollback is not None and result.rollback.failed:
            print(str(RollbackIncomplete(result.rollback.failed_identifiers())), file=sys.stderr)
    return exit_code_for(result)


async def _cmd_plan(args: argparse.Namespace, ctx: AppContext, spec: ClusterSpec) -> int:
    plan = await ctx.orchestrator.plan(spec)
    _print_plan(plan, args.output)
    return EXIT_OK


async def _cmd_upgrade_roles(
    args: argparse.Namespace, ctx: AppContext, spec: ClusterSpec
) -> int:
    if not args.yes:
        print(
            "Upgrading roles changes their trust and permission policies in place; "
            "re-run with --yes to confirm.",
            file=sys.stderr,
        )
        return EXIT_USAGE
    plan = await ctx.orchestrator.upgrade_roles(spec)
    _print_plan(plan, args.output)
    failed = [entry for entry in plan if entry.error is not None]
    return EXIT_FAILED if failed else EXIT_OK


async def _cmd_delete(args: argparse.Namespace, ctx: AppContext) -> int:
    deadline = ctx.poller.clock() + ctx.settings.polling.timeout_seconds
    cancel_event = asyncio.Event()
    with _interrupt_sets(cancel_event):
        report = await ctx.teardown.delete(
            args.cluster,
            deadline,
            delete_identity=args.delete_identity,
            cancel_event=cancel_event,
        )
    if args.output == "json":
        print(
            dumps(
                {
                    "cluster_id": report.cluster.id,
                    "deleted": [descriptor.arn for descriptor in report.deleted],
                    "failed": [descriptor.arn for descriptor in report.failed],
                }
            )
        )
    else:
        print(f"Cluster {report.cluster.name} ({report.cluster.id}) has been deleted.")
        for descriptor in report.deleted:
            print(f"Deleted {descriptor.arn}")
    report.raise_if_incomplete()
    return EXIT_OK


async def _cmd_list_addons(args: argparse.Namespace, ctx: AppContext) -> int:
    if args.cluster:
        installations = await list_cluster_addons(ctx.service, args.cluster)
        if args.output == "json":
            print(dumps(installations))
        elif not installations:
            print(f"There are no add-ons installed on cluster '{args.cluster}'")
        else:
            print(
                _table(
                    ["ID", "NAME", "STATE"],
                    [[item.id, item.name, item.state] for item in installations],
                )
            )
        return EXIT_OK

    addons = await list_available_addons(ctx.service)
    if args.output == "json":
        print(dumps(addons))
    elif not addons:
        print("There are no add-ons available")
    else:
        print(
            _table(
                ["ID", "NAME", "AVAILABILITY"],
                [
                    [addon.id, addon.name, "available" if addon.available else "unavailable"]
                    for addon in addons
                ],
            )
        )
    return EXIT_OK


def _add_cluster_file_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-f",
        "--cluster-file",
        required=True,
        help="Path to the YAML cluster definition.",
    )
    parser.add_argument("--name", help="Override the cluster name.")
    parser.add_argument("--region", help="Override the AWS region.")
    parser.add_argument("--version", help="Override the OpenShift version.")
    parser.add_argument("--replicas", type=int, help="Override the compute node count.")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rosa-provision",
        description="Provision managed OpenShift clusters on AWS with STS identity roles.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-o",
        "--output",
        choices=["text", "json"],
        default="text",
        help="Output format.",
    )
    parser.add_argument("--log-level", help="Override LOG_LEVEL.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Create identity resources and a cluster")
    _add_cluster_file_arguments(create)
    create.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the plan and request problems without changing anything.",
    )

    plan = subparsers.add_parser("plan", help="Show which identity resources exist")
    _add_cluster_file_arguments(plan)

    upgrade = subparsers.add_parser(
        "upgrade-roles", help="Upgrade roles whose version differs from the cluster's"
    )
    _add_cluster_file_arguments(upgrade)
    upgrade.add_argument("--yes", action="store_true", help="Confirm the in-place upgrade.")

    delete = subparsers.add_parser("delete", help="Delete a cluster")
    delete.add_argument("-c", "--cluster", required=True, help="Cluster name or id.")
    delete.add_argument(
        "--delete-identity",
        action="store_true",
        help="Also delete the cluster's operator roles and OIDC provider.",
    )

    list_parser = subparsers.add_parser("list", help="List resources")
    list_subparsers = list_parser.add_subparsers(dest="resource", required=True)
    addons = list_subparsers.add_parser("addons", help="List add-ons")
    addons.add_argument(
        "-c",
        "--cluster",
        help="List the add-on installations of this cluster instead of available add-ons.",
    )

    return parser.parse_args(argv)


async def _dispatch(args: argparse.Namespace, settings: Settings) -> int:
    spec: ClusterSpec | None = None
    region: str | None = None
    if args.command in ("create", "plan", "upgrade-roles"):
        spec = _load_spec(args, settings)
        region = spec.region

    reporter = ConsoleReporter() if args.output == "text" else None
    ctx = build_context(settings, reporter=reporter, region=region)
    try:
        if args.command == "create":
            return await _cmd_create(args, ctx, spec)
        if args.command == "plan":
            return await _cmd_plan(args, ctx, spec)
        if args.command == "upgrade-roles":
            return await _cmd_upgrade_roles(args, ctx, spec)
        if args.command == "delete":
            return await _cmd_delete(args, ctx)
        return await _cmd_list_addons(args, ctx)
    finally:
        await ctx.aclose()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except RuntimeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    configure_logging(args.log_level)

    try:
        return asyncio.run(_dispatch(args, settings))
    except (FileNotFoundError, pydantic.ValidationError, ValidationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except RollbackIncomplete as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ROLLBACK_INCOMPLETE
    except ProvisionerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
