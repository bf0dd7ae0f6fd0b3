"""
Run Status — CLI

Usage:
    # Compute the status document locally (no cluster access)
    python -m aggregation.cli snapshot --expected expected.yaml --results results.json

    # Record results and annotate the aggregator pod once
    python -m aggregation.cli publish --expected expected.yaml --results results.json \\
        --namespace heptio-sonobuoy

    # Republish every interval until every result has arrived
    python -m aggregation.cli watch --expected expected.yaml --results results.json

    # Read the published status back
    python -m aggregation.cli status --namespace heptio-sonobuoy

Expected file: a non-empty list of {node, plugin} mappings (YAML or JSON).
Results file: a mapping of label -> {node, plugin, error}, or a list of
the same entries.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import yaml

from aggregation.policy import get_policy
from aggregation.publisher import PublishError, StatusNotFound, StatusPublisher, get_status
from aggregation.locator import LocatorError, PodLocator
from aggregation.reporter import StatusReporter
from aggregation.types import ExpectedResult, PluginResult, Status, UnitState
from aggregation.updater import Updater
from infra.config import Settings, load_config
from infra.kube import KubeAPIError, KubeClient, PodClient
from infra.logging import configure_logging


def _read_document(path: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"file not found: {path}")
    with open(p) as f:
        # JSON is a subset of YAML
        return yaml.safe_load(f)


def _entries(path: str, entries, what: str) -> list[dict]:
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"{path}: {what} entry {entry!r} is not a {{node, plugin}} mapping")
    return list(entries)


def load_expected(path: str) -> list[ExpectedResult]:
    doc = _read_document(path) or []
    if not isinstance(doc, list):
        raise ValueError(f"{path}: expected a list of {{node, plugin}} entries")
    if not doc:
        # Nothing could ever be reported, so the run would never finish.
        raise ValueError(f"{path}: no expected results")
    return [ExpectedResult.from_dict(d) for d in _entries(path, doc, "expected")]


def load_results(path: str | None) -> dict[str, PluginResult]:
    if not path:
        return {}
    doc = _read_document(path) or {}
    if isinstance(doc, list):
        doc = {str(i): d for i, d in enumerate(doc)}
    if not isinstance(doc, dict):
        raise ValueError(f"{path}: expected a mapping or list of results")
    _entries(path, doc.values(), "result")
    return {str(label): PluginResult.from_dict(d) for label, d in doc.items()}


def _client(args, settings: Settings) -> PodClient:
    server = args.server or settings.api_server
    if server:
        token = args.token or ""
        if not token and Path(settings.token_path).exists():
            token = Path(settings.token_path).read_text().strip()
        return KubeClient(server, token=token, verify=not args.insecure,
                          timeout=settings.http_timeout)
    return KubeClient.in_cluster(settings.token_path, settings.ca_path,
                                 timeout=settings.http_timeout)


def _build_updater(args, settings: Settings, publisher: StatusPublisher | None) -> Updater:
    return Updater(
        load_expected(args.expected),
        namespace=args.namespace or settings.namespace,
        publisher=publisher,
        policy=get_policy(settings.policy),
        reject_duplicates=settings.reject_duplicates,
    )


def print_status(status: Status, as_json: bool = False, out=None):
    out = out or sys.stdout
    if as_json:
        print(json.dumps(status.to_dict(), indent=2), file=out)
        return
    print(f"status: {status.status.value}", file=out)
    counts = status.counts()
    print("  " + "  ".join(f"{k}={v}" for k, v in counts.items()), file=out)
    for p in status.plugins:
        print(f"  {p.node:24s} {p.plugin:24s} {p.status.value}", file=out)


def cmd_snapshot(args, settings: Settings) -> int:
    updater = _build_updater(args, settings, publisher=None)
    updater.receive_all(load_results(args.results))
    print_status(updater.snapshot(), as_json=args.json)
    return 0


def cmd_publish(args, settings: Settings) -> int:
    client = _client(args, settings)
    publisher = StatusPublisher(
        client,
        locator=PodLocator(client, settings.label_selector),
        annotation_key=settings.annotation_key,
        default_target=settings.default_target,
    )
    updater = _build_updater(args, settings, publisher)
    try:
        target = updater.publish(load_results(args.results))
    except PublishError as e:
        cause = f": {e.__cause__}" if e.__cause__ else ""
        print(f"Error: {e}{cause}", file=sys.stderr)
        return 1
    print(f"Annotated {updater.namespace}/{target} ({updater.status.value})", file=sys.stderr)
    print_status(updater.snapshot(), as_json=args.json)
    return 0


def cmd_watch(args, settings: Settings) -> int:
    client = _client(args, settings)
    publisher = StatusPublisher(
        client,
        locator=PodLocator(client, settings.label_selector),
        annotation_key=settings.annotation_key,
        default_target=settings.default_target,
    )
    updater = _build_updater(args, settings, publisher)

    def source():
        # Results file is rewritten by producers while we watch.
        if not Path(args.results).exists():
            return {}
        try:
            return load_results(args.results)
        except (ValueError, KeyError, yaml.YAMLError) as e:
            print(f"Warning: skipping unreadable results file: {e}", file=sys.stderr)
            return {}

    reporter = StatusReporter(updater, source=source,
                              interval=args.interval or settings.publish_interval)
    reporter.start()
    try:
        finished = reporter.wait(timeout=args.timeout or None)
    finally:
        reporter.stop()
    if not finished or reporter.finished is None:
        print(f"Error: no terminal status after {args.timeout}s", file=sys.stderr)
        return 1
    print_status(updater.snapshot(), as_json=args.json)
    return 0 if reporter.finished is UnitState.COMPLETE else 2


def cmd_status(args, settings: Settings) -> int:
    client = _client(args, settings)
    try:
        status = get_status(
            client,
            args.namespace or settings.namespace,
            locator=PodLocator(client, settings.label_selector),
            annotation_key=settings.annotation_key,
            default_target=settings.default_target,
        )
    except (StatusNotFound, LocatorError, KubeAPIError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print_status(status, as_json=args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run Status — plugin result aggregation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", default="runstatus.yaml",
                        help="Config YAML (default: runstatus.yaml)")
    parser.add_argument("--env", default="", help="Config overlay profile (RS_ENV)")
    parser.add_argument("--log-level", default="", help="Override log level")

    subs = parser.add_subparsers(dest="command", help="Command")

    def cluster_args(p):
        p.add_argument("--namespace", "-n", default="")
        p.add_argument("--server", default="", help="API server URL (default: in-cluster)")
        p.add_argument("--token", default="", help="Bearer token")
        p.add_argument("--insecure", action="store_true", help="Skip TLS verification")
        p.add_argument("--json", action="store_true", help="Print the document as JSON")

    snap_p = subs.add_parser("snapshot", help="Compute the status document locally")
    snap_p.add_argument("--expected", "-e", required=True)
    snap_p.add_argument("--results", "-r")
    snap_p.add_argument("--namespace", "-n", default="")
    snap_p.add_argument("--json", action="store_true")

    pub_p = subs.add_parser("publish", help="Record results and annotate the aggregator pod")
    pub_p.add_argument("--expected", "-e", required=True)
    pub_p.add_argument("--results", "-r")
    cluster_args(pub_p)

    watch_p = subs.add_parser("watch", help="Republish on an interval until the run finishes")
    watch_p.add_argument("--expected", "-e", required=True)
    watch_p.add_argument("--results", "-r", required=True,
                         help="Results file, re-read on every tick")
    watch_p.add_argument("--interval", type=float, default=0.0,
                         help="Seconds between publishes (default: aggregator.publish_interval)")
    watch_p.add_argument("--timeout", type=float, default=0.0,
                         help="Give up after this many seconds (default: never)")
    cluster_args(watch_p)

    status_p = subs.add_parser("status", help="Show the published status")
    cluster_args(status_p)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    settings = Settings.from_config(load_config(args.config, env=args.env))
    configure_logging(level=args.log_level or settings.log_level)

    try:
        if args.command == "snapshot":
            return cmd_snapshot(args, settings)
        if args.command == "watch":
            return cmd_watch(args, settings)
        if args.command == "publish":
            return cmd_publish(args, settings)
        return cmd_status(args, settings)
    except (FileNotFoundError, ValueError, KeyError, KubeAPIError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
