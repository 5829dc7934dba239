#!/usr/bin/env python3
"""
ECR Image Cleanup

Deletes old ECR images that are not used by any running pod, keeping the
newest images of every repository. Runs in dry-run mode unless --apply is
given.

Examples:
    python ecr_cleanup.py --repositories my-app,my-worker --keep-max 50 --once
    python ecr_cleanup.py --namespaces default,jobs --interval 1800 --apply
"""

import argparse
import signal
import sys
import threading
from typing import List, Optional

from utils.cleanup_runner import EcrCleanupRunner, RepositoryCleanupResult
from utils.config_manager import ConfigManager, ConfigValidationError, split_names
from utils.ecr_client import EcrClient
from utils.error_utils import ActionableError, create_config_error
from utils.logging_utils import get_logger, log_exception, setup_logging
from utils.report_utils import format_cleanup_table, save_json
from utils.workload_images import WorkloadImageScanner

logger = get_logger(__name__)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Delete old ECR images that are not used by running Kubernetes workloads",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", help="Path to config.yaml (default: CONFIG_FILE env var or ../config.yaml)")
    parser.add_argument("--region", help="AWS region of the ECR repositories")
    parser.add_argument("--repositories", help="Comma separated ECR repository names to clean")
    parser.add_argument("--namespaces", help="Comma separated namespaces to scan for running pods (empty = all)")
    parser.add_argument("--kubeconfig", help="Path to kubeconfig (default: in-cluster config or ~/.kube/config)")
    parser.add_argument("--keep-max", type=int, help="Number of newest images to keep per repository")
    parser.add_argument("--interval", type=int, help="Seconds between cleanup passes")
    parser.add_argument("--once", action="store_true", help="Run a single cleanup pass and exit")
    parser.add_argument("--apply", action="store_true", help="Actually delete images (default: dry-run)")
    parser.add_argument("--no-report", action="store_true", help="Do not save a JSON report of the pass")
    parser.add_argument("--show-config", action="store_true", help="Print the effective configuration and exit")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def save_report(results: List[RepositoryCleanupResult], report_path: str) -> str:
    rows = [result.to_dict() for result in results]
    print(format_cleanup_table(rows))
    return save_json(report_path, {"repositories": rows}, timestamp=True)


def build_runner(args: argparse.Namespace, cm: ConfigManager) -> EcrCleanupRunner:
    keep_max = args.keep_max if args.keep_max is not None else cm.get_keep_max()
    if keep_max < 0:
        raise create_config_error("keep_max", keep_max, "must be a non-negative integer")

    repositories = split_names(args.repositories) if args.repositories else cm.get_repositories()
    namespaces = split_names(args.namespaces) if args.namespaces is not None else cm.get_namespaces()
    dry_run = cm.is_dry_run_by_default() and not args.apply

    ecr_client = EcrClient(region=args.region or cm.get_aws_region(), retry_settings=cm.get_retry_settings())
    scanner = WorkloadImageScanner(kubeconfig=args.kubeconfig or cm.get_kubeconfig())

    return EcrCleanupRunner(
        ecr_client,
        scanner,
        keep_max=keep_max,
        repositories=repositories,
        namespaces=namespaces,
        dry_run=dry_run,
        delete_batch_size=cm.get_delete_batch_size(),
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    setup_logging(args.log_level)

    try:
        cm = ConfigManager(config_file=args.config)
        if args.show_config:
            cm.print_config()
            return 0
        runner = build_runner(args, cm)
    except (ConfigValidationError, ActionableError) as e:
        logger.error(str(e))
        return 1

    if not runner.repositories:
        logger.error("No repositories configured. Use --repositories or cleanup.repositories in config.yaml")
        return 1

    if runner.dry_run:
        logger.info("Running in DRY RUN mode (default) - no images will be deleted. Use --apply to delete.")
    else:
        logger.warning("⚠️  Running in DELETE mode - images will be deleted from ECR")

    report_path = None if args.no_report else cm.get_cleanup_report_path()

    def handle_results(results: List[RepositoryCleanupResult]) -> None:
        if report_path:
            save_report(results, report_path)

    if args.once:
        try:
            results = runner.run_once()
        except ActionableError as e:
            log_exception(logger, "Cleanup pass failed", e)
            return 1
        handle_results(results)
        return 0 if all(result.succeeded for result in results) else 1

    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current pass")
        stop_event.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    interval = args.interval if args.interval is not None else cm.get_interval()
    if interval < 1:
        logger.error(str(create_config_error("interval", interval, "must be a positive number of seconds")))
        return 1
    runner.run_forever(interval, stop_event=stop_event, on_results=handle_results)
    return 0


if __name__ == "__main__":
    sys.exit(main())
