#!/usr/bin/env python3
"""
Storage Metrics Collector - Azure Storage account metrics across subscriptions

Collects Azure Monitor metrics (transactions, availability, capacity, latency)
for every storage account in every accessible subscription, and writes
per-account results plus a fleet-wide summary.

Usage:
    python3 storage_metrics_collect.py
    python3 storage_metrics_collect.py --subscription <subscription-id> --time-range 7d
    python3 storage_metrics_collect.py --metrics Transactions,Availability --concurrency 16
    python3 storage_metrics_collect.py --output https://mystorageaccount.blob.core.windows.net/metrics/
"""
import argparse
import logging
import os
import signal
import sys

from storage_metrics.azure_backend import (
    AzureIdentityContext,
    AzureMetricsBackend,
    AzureStorageDirectory,
    get_credential,
)
from storage_metrics.concurrency import CancellationToken, CollectionProgress
from storage_metrics.config import generate_sample_config, load_config
from storage_metrics.constants import FILE_PREFIX, GRANULARITIES, SUPPORTED_METRICS, TIME_RANGES
from storage_metrics.errors import CollectorError, InvalidConfiguration
from storage_metrics.pipeline import run_collection
from storage_metrics.sinks import build_sinks, export_results
from storage_metrics.utils import ProgressTracker, is_blob_url, setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Storage Metrics Collector - Azure Storage account metrics')
    parser.add_argument('--config', help='YAML config file (default: ./sma-config.yaml if present)')
    parser.add_argument('--generate-config', action='store_true', help='Print a sample config file and exit')
    parser.add_argument(
        '--subscription',
        action='append',
        help='Subscription ID to scan; repeat or comma-separate (default: all accessible)'
    )
    parser.add_argument('--time-range', choices=list(TIME_RANGES), help='Query window (default: 1d)')
    parser.add_argument('--granularity', choices=list(GRANULARITIES), help='Sampling interval (default: 1h)')
    parser.add_argument(
        '--metrics',
        help=f"Comma-separated metrics (default: all of {', '.join(SUPPORTED_METRICS[:5])})"
    )
    parser.add_argument(
        '--continue-on-error',
        dest='continue_on_error',
        action='store_true',
        default=None,
        help='Skip failed subscriptions/resources and keep going (default)'
    )
    parser.add_argument(
        '--fail-fast',
        dest='continue_on_error',
        action='store_false',
        help='Abort the run on the first subscription or resource failure'
    )
    parser.add_argument('--max-retries', type=int, help='Retries per metric fetch (default: 3)')
    parser.add_argument('--retry-delay', type=float, help='Seconds between retry attempts (default: 2)')
    parser.add_argument(
        '--concurrency',
        type=int,
        help='Number of storage accounts collected in parallel (default: 8, use 1 for serial)'
    )
    parser.add_argument('--regions', help='Comma-separated list of regions to filter (e.g., eastus,westus2)')
    parser.add_argument('--top', type=int, help='Storage accounts ranked per metric (default: 10)')
    parser.add_argument('--rate-limit', type=float, help='Metric calls per second across workers (0 disables)')
    parser.add_argument('--rate-burst', type=int, help='Token bucket size for --rate-limit')
    parser.add_argument('--deadline', type=float, help='Stop after this many seconds, keeping completed results')
    parser.add_argument('--output', help='Output directory or blob URL (default: .)')
    parser.add_argument('--format', help='Comma-separated outputs: json,csv,console (default: all)')
    parser.add_argument(
        '--include-resource-ids',
        action='store_true',
        default=None,
        help='Include full resource IDs in output (default: redact for privacy)'
    )
    parser.add_argument(
        '--no-partial-export',
        dest='export_partial',
        action='store_false',
        default=None,
        help='Do not export results when the run aborts'
    )
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        return EXIT_OK

    try:
        config = load_config(args)
    except InvalidConfiguration as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_ERROR

    # Setup logging - write to file if output is local directory
    log_dir = config.output if not is_blob_url(config.output) else None
    setup_logging(config.log_level, output_dir=log_dir)

    cancel_token = CancellationToken(deadline_seconds=config.deadline_seconds)

    def handle_interrupt(signum, frame):
        logger.warning("Interrupt received, stopping after in-flight requests...")
        cancel_token.cancel("Interrupted by user")

    signal.signal(signal.SIGINT, handle_interrupt)

    try:
        credential = get_credential()
        progress = CollectionProgress()
        with ProgressTracker("Storage metrics", progress):
            run = run_collection(
                config,
                AzureIdentityContext(credential),
                AzureStorageDirectory(credential),
                AzureMetricsBackend(credential),
                progress=progress,
                cancel_token=cancel_token,
            )
    except CollectorError as e:
        logger.error(str(e))
        logger.error("Check your Azure credentials and subscription read access.")
        return EXIT_ERROR

    if run.aborted and not config.export_partial:
        logger.error(f"Run aborted, partial export disabled: {run.error}")
        return EXIT_ERROR

    output_base = config.output.rstrip('/')
    if is_blob_url(output_base):
        output_base = f"{output_base}/{run.run_id}"
    else:
        os.makedirs(output_base, exist_ok=True)

    sinks = build_sinks(
        config.formats,
        output_base,
        prefix=FILE_PREFIX,
        redact=not config.include_resource_ids,
    )
    sink_failures = export_results(run, sinks)

    print(f"\nRun ID: {run.run_id} ({run.state})")
    print(f"Output: {output_base}/")

    if run.aborted or sink_failures:
        return EXIT_ERROR
    if run.cancelled:
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
