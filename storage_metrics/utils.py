"""
Utility functions for the storage metrics collector.

Logging Level Standards:
------------------------
- ERROR: Failures that stop the run
         "Failed to list Azure subscriptions: {e}"
- WARNING: Skipped subscriptions/resources, metric retries and exhausted metrics
           "Retry 1/3 for Transactions on mystorageacct after 2.0s due to: {e}"
- INFO: Progress messages, resource counts
        "Found 42 storage accounts in Production"
- DEBUG: Per-metric detail
         "No data for Egress on mystorageacct"
"""
import csv
import hashlib
import io
import json
import logging
import os
import re
import sys
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .concurrency import CollectionProgress, ProgressSnapshot
from .errors import SinkWriteFailure

logger = logging.getLogger(__name__)


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Renders CollectionProgress updates as a rich progress bar.

    Falls back to periodic plain prints if stdout is not a TTY (e.g., when
    piping output).

    Usage:
        progress = CollectionProgress()
        with ProgressTracker("Storage metrics", progress):
            run_collection(..., progress=progress)
    """

    def __init__(self, label: str, progress: CollectionProgress, show_progress: bool = True,
                 plain_every: int = 50):
        self.label = label
        self.progress = progress
        self.show_progress = show_progress
        self.plain_every = max(plain_every, 1)
        self._use_rich = show_progress and sys.stdout.isatty()
        self._console: Optional[Console] = None
        self._bar: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self._last_printed = 0
        self._print_lock = threading.Lock()

    def __enter__(self):
        if self._use_rich:
            self._console = Console()
            self._bar = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._task = self._bar.add_task(f"{self.label}: discovering", total=None)
            self._bar.start()
        elif self.show_progress:
            print(f"\n{'='*60}")
            print(f"{self.label} Collection Starting")
            print(f"{'='*60}")
        self.progress.subscribe(self.update)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        snap = self.progress.snapshot()
        if self._use_rich:
            assert self._bar is not None
            self._bar.stop()
        if self.show_progress:
            self._print_summary(snap)
        return False

    def update(self, snap: ProgressSnapshot) -> None:
        """Progress listener; called from worker threads."""
        if self._use_rich:
            assert self._bar is not None and self._task is not None
            self._bar.update(
                self._task,
                description=f"{self.label}: collecting",
                total=snap.total_resources or None,
                completed=snap.processed_resources,
            )
        elif self.show_progress and snap.processed_resources:
            with self._print_lock:
                # Snapshots from different workers can arrive out of order
                if snap.processed_resources <= self._last_printed:
                    return
                if (snap.processed_resources - self._last_printed >= self.plain_every
                        or snap.processed_resources == snap.total_resources):
                    self._last_printed = snap.processed_resources
                    print(f"  Processed {snap.processed_resources:,}/{snap.total_resources:,} "
                          f"resources ({snap.percent_complete}%)")

    def _print_summary(self, snap: ProgressSnapshot) -> None:
        account_failures = sum(1 for f in snap.failures if f.scope == "account")
        if self._use_rich:
            assert self._console is not None
            table = Table(title=f"{self.label} Collection Summary", show_header=False)
            table.add_column("Metric", style="cyan")
            table.add_column("Value", style="green")
            table.add_row("Resources processed", f"{snap.processed_resources:,} / {snap.total_resources:,}")
            table.add_row("Resources failed", f"{snap.failed_resources:,}")
            table.add_row("Subscriptions skipped", f"{account_failures:,}")
            self._console.print(table)
        else:
            print(f"\n{'='*60}")
            print(f"{self.label} Collection Complete")
            print(f"{'='*60}")
            print(f"  Resources processed:   {snap.processed_resources:,} / {snap.total_resources:,}")
            print(f"  Resources failed:      {snap.failed_resources:,}")
            print(f"  Subscriptions skipped: {account_failures:,}")
            print()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def extract_resource_group(resource_id: str) -> str:
    """Extract resource group from Azure resource ID."""
    try:
        parts = resource_id.split('/')
        lowered = [p.lower() for p in parts]
        rg_index = lowered.index('resourcegroups') + 1
        return parts[rg_index]
    except (ValueError, IndexError):
        return 'unknown'


# =============================================================================
# Redaction
# =============================================================================

def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """
    Hash a sensitive ID using consistent hashing.

    Uses first 8 chars of SHA256 so the same ID always maps to the same
    token within and across runs.
    """
    if not value:
        return value
    hash_val = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{hash_val}" if prefix else hash_val


_AZURE_RESOURCE_RE = re.compile(
    r'^(/subscriptions/)([0-9a-f-]{36})(/resourceGroups/)([^/]+)(/providers/.+)$', re.IGNORECASE
)
_AZURE_SUBSCRIPTION_RE = re.compile(r'^(/subscriptions/)([0-9a-f-]{36})$', re.IGNORECASE)
_GUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)


def _redact_value(value: str) -> tuple:
    """
    Return (was_redacted, redacted_value) for Azure ids.

    Resource ids keep their provider path; subscription, resource group and
    resource name are hashed.
    """
    azure_match = _AZURE_RESOURCE_RE.match(value)
    if azure_match:
        pre_sub, sub_id, pre_rg, rg_name, rest = azure_match.groups()
        rest_parts = rest.rsplit('/', 1)
        if len(rest_parts) == 2:
            rest = f"{rest_parts[0]}/{hash_sensitive_id(rest_parts[1])}"
        return (True, f"{pre_sub}{hash_sensitive_id(sub_id)}{pre_rg}{hash_sensitive_id(rg_name)}{rest}")

    sub_match = _AZURE_SUBSCRIPTION_RE.match(value)
    if sub_match:
        return (True, f"/subscriptions/{hash_sensitive_id(sub_match.group(2))}")

    if _GUID_RE.match(value):
        return (True, f"id-{hash_sensitive_id(value.lower())}")

    return (False, value)


def _redact_text(value: str) -> str:
    """Redact a whole-value id, or ids embedded in free text (error messages)."""
    was_redacted, redacted = _redact_value(value)
    return redacted if was_redacted else redact_log_message(value)


# Field names that should always be hashed (case-insensitive check)
_SENSITIVE_FIELD_NAMES = {
    'account_id', 'subscription_id', 'tenant_id', 'resource_id', 'identifier',
}


def redact_sensitive_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact Azure ids in a dictionary or list.

    Consistent hashing keeps correlation possible within the output of a
    run (results, summary and log file all hash the same way).
    """
    if _depth > 50:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if str(key).lower() in _SENSITIVE_FIELD_NAMES and isinstance(value, str) and value:
                was_redacted, redacted = _redact_value(value)
                result[key] = redacted if was_redacted else hash_sensitive_id(value, f"{str(key).lower()[:3]}-")
            elif isinstance(value, (dict, list)):
                result[key] = redact_sensitive_data(value, _depth + 1)
            elif isinstance(value, str):
                result[key] = _redact_text(value)
            else:
                result[key] = value
        return result

    if isinstance(data, list):
        return [redact_sensitive_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return _redact_text(data)

    return data


_LOG_REDACT_PATTERNS = [
    # Resource paths first so the GUID pattern does not split them
    (re.compile(r'(/subscriptions/)([0-9a-f-]{36})(/resourceGroups/)([^/\s]+)(/providers/[^\s,\]}"\']+)', re.IGNORECASE),
     lambda m: f"{m.group(1)}{hash_sensitive_id(m.group(2))}{m.group(3)}{hash_sensitive_id(m.group(4))}{m.group(5)}"),
    (re.compile(r'(/subscriptions/)([0-9a-f-]{36})(?![/])', re.IGNORECASE),
     lambda m: f"{m.group(1)}{hash_sensitive_id(m.group(2))}"),
    (re.compile(r'\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b', re.IGNORECASE),
     lambda m: f"id-{hash_sensitive_id(m.group(1).lower())}"),
]


def redact_log_message(message: str) -> str:
    """Redact Azure ids in a log message with the same hashing as output files."""
    if not message:
        return message
    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)
    return message


class RedactingFilter(logging.Filter):
    """Logging filter that redacts subscription ids and resource paths."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(threadName)s] %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"sma_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        # Persisted logs never carry raw subscription ids
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger('azure').setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger(__name__)


# =============================================================================
# Output writers
# =============================================================================

def is_blob_url(path: str) -> bool:
    return path.startswith("https://") and ".blob.core.windows.net" in path


def write_json(data: Any, filepath: str) -> None:
    """Write data to a JSON file (or blob) with secure permissions."""
    body = json.dumps(data, indent=2, default=str)

    if is_blob_url(filepath):
        write_to_blob(body, filepath)
        return

    # Local file - owner read/write only
    try:
        fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            f.write(body)
    except OSError as e:
        raise SinkWriteFailure("json", f"Failed to write {filepath}: {e}", original_error=e) from e
    logger.info(f"Wrote {filepath}")


def write_csv(data: List[Dict], filepath: str, fieldnames: Optional[List[str]] = None) -> None:
    """Write rows to a CSV file (or blob)."""
    if not data:
        return

    if not fieldnames:
        fieldnames = list(data[0].keys())

    if is_blob_url(filepath):
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(data)
        write_to_blob(output.getvalue(), filepath)
        return

    try:
        fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            writer.writerows(data)
    except OSError as e:
        raise SinkWriteFailure("csv", f"Failed to write {filepath}: {e}", original_error=e) from e
    logger.info(f"Wrote {filepath}")


def write_to_blob(body: str, blob_url: str, credential: Any = None) -> None:
    """Upload a text body to Azure Blob Storage."""
    from azure.identity import DefaultAzureCredential
    from azure.storage.blob import BlobClient

    try:
        blob_client = BlobClient.from_blob_url(blob_url, credential=credential or DefaultAzureCredential())
        blob_client.upload_blob(body, overwrite=True)
    except Exception as e:
        raise SinkWriteFailure("blob", f"Failed to write to Azure Blob ({blob_url}): {e}", original_error=e) from e
    logger.info(f"Wrote {blob_url}")
