"""
Result sinks.

Each sink consumes a finished CollectionRun (ordered results plus the
aggregate report) and persists or renders it. Sinks never recompute
aggregates. A failing sink raises SinkWriteFailure; export_results() keeps
going with the remaining sinks so one bad target does not lose the others.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .errors import SinkWriteFailure
from .models import MetricError, MetricOk
from .utils import redact_sensitive_data, write_csv, write_json

if TYPE_CHECKING:
    from .pipeline import CollectionRun

logger = logging.getLogger(__name__)

CSV_FIELDS = [
    'subscription_id', 'resource_group', 'storage_account', 'resource_id', 'location',
    'kind', 'sku_name', 'sku_tier', 'resource_status', 'metric', 'outcome', 'value',
    'unit', 'timestamp', 'average', 'total', 'maximum', 'minimum', 'count', 'attempts', 'error',
]


class ResultSink(ABC):
    name = "sink"

    @abstractmethod
    def write(self, run: "CollectionRun") -> None:
        """Persist or render the run. Raises SinkWriteFailure."""


class JsonFileSink(ResultSink):
    """
    Writes two documents per run:
    <prefix>_results_<ts>.json (every CollectionResult, in discovery order) and
    <prefix>_summary_<ts>.json (AggregateReport, failures and warnings).
    """
    name = "json"

    def __init__(self, output_base: str, file_ts: str, prefix: str, redact: bool = True):
        self.output_base = output_base.rstrip('/')
        self.file_ts = file_ts
        self.prefix = prefix
        self.redact = redact

    def paths(self) -> Dict[str, str]:
        return {
            'results': f"{self.output_base}/{self.prefix}_results_{self.file_ts}.json",
            'summary': f"{self.output_base}/{self.prefix}_summary_{self.file_ts}.json",
        }

    def write(self, run: "CollectionRun") -> None:
        documents = {
            'results': run.results_document(),
            'summary': run.summary_document(),
        }
        for kind, path in self.paths().items():
            data = documents[kind]
            write_json(redact_sensitive_data(data) if self.redact else data, path)


def result_rows(run: "CollectionRun") -> List[Dict[str, Any]]:
    """One row per resource x metric, in discovery then metric order."""
    rows = []
    for result in run.results:
        resource = result.resource
        for metric_name, outcome in result.outcomes.items():
            row: Dict[str, Any] = {key: None for key in CSV_FIELDS}
            row.update({
                'subscription_id': resource.account_id,
                'resource_group': resource.resource_group,
                'storage_account': resource.name,
                'resource_id': resource.resource_id,
                'location': resource.location,
                'kind': resource.kind,
                'sku_name': resource.sku_name,
                'sku_tier': resource.sku_tier,
                'resource_status': result.status.value,
                'metric': metric_name,
                'outcome': outcome.status,
                'attempts': outcome.attempts,
            })
            if isinstance(outcome, MetricOk):
                row.update({
                    'value': outcome.value,
                    'unit': outcome.unit,
                    'timestamp': outcome.timestamp.isoformat(),
                    'average': outcome.average,
                    'total': outcome.total,
                    'maximum': outcome.maximum,
                    'minimum': outcome.minimum,
                    'count': outcome.count,
                })
            elif isinstance(outcome, MetricError):
                row['error'] = outcome.message
            rows.append(row)
    return rows


class CsvFileSink(ResultSink):
    name = "csv"

    def __init__(self, output_base: str, file_ts: str, prefix: str, redact: bool = True):
        self.path = f"{output_base.rstrip('/')}/{prefix}_metrics_{file_ts}.csv"
        self.redact = redact

    def write(self, run: "CollectionRun") -> None:
        rows = result_rows(run)
        if self.redact:
            rows = redact_sensitive_data(rows)
        write_csv(rows, self.path, fieldnames=CSV_FIELDS)


def _fmt(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return f"{value:,.2f}"


class ConsoleSummarySink(ResultSink):
    """Prints the aggregate report as rich tables."""
    name = "console"

    def __init__(self, console: Optional[Console] = None, top: int = 5):
        self.console = console or Console()
        self.top = top

    def write(self, run: "CollectionRun") -> None:
        report = run.report
        if report is None:
            self.console.print("No report available.")
            return

        status = Table(title=f"Run {run.run_id} ({run.state})", show_header=False)
        status.add_column("Metric", style="cyan")
        status.add_column("Value", style="green")
        status.add_row("Subscriptions", str(len(run.accounts)))
        status.add_row("Storage accounts", f"{report.total_resources:,} / {len(run.resources):,}")
        status.add_row("Succeeded", f"{report.succeeded:,}")
        status.add_row("Partially failed", f"{report.partially_failed:,}")
        status.add_row("Failed", f"{report.failed:,}")
        status.add_row("Skipped subscriptions", str(sum(1 for f in run.failures if f.scope == "account")))
        if run.error:
            status.add_row("Error", str(run.error))
        self.console.print(status)

        metrics = Table(title="Fleet metrics")
        for column in ("Metric", "Resources", "Mean (avg)", "Sum (total)", "Max", "Min"):
            metrics.add_column(column)
        for name, summary in report.per_metric.items():
            metrics.add_row(
                name,
                str(summary.contributing_count),
                _fmt(summary.mean_of_averages),
                _fmt(summary.sum_of_totals),
                _fmt(summary.max),
                _fmt(summary.min),
            )
        self.console.print(metrics)

        for name, ranked in report.top_by_metric.items():
            if not ranked:
                continue
            top = Table(title=f"Top {min(self.top, len(ranked))} by {name}")
            top.add_column("#", justify="right")
            top.add_column("Storage account")
            top.add_column("Value", justify="right")
            for position, entry in enumerate(ranked[:self.top], start=1):
                top.add_row(str(position), entry.name, _fmt(entry.value))
            self.console.print(top)


def build_sinks(formats: List[str], output: str, prefix: str, redact: bool = True,
                file_ts: Optional[str] = None, console: Optional[Console] = None) -> List[ResultSink]:
    """Create the sinks for the requested output formats."""
    # Short timestamp for filenames (HHMMSS)
    file_ts = file_ts or datetime.now(timezone.utc).strftime('%H%M%S')
    output_base = output.rstrip('/')

    sinks: List[ResultSink] = []
    for fmt in formats:
        if fmt == 'json':
            sinks.append(JsonFileSink(output_base, file_ts, prefix, redact=redact))
        elif fmt == 'csv':
            sinks.append(CsvFileSink(output_base, file_ts, prefix, redact=redact))
        elif fmt == 'console':
            sinks.append(ConsoleSummarySink(console=console))
    return sinks


def export_results(run: "CollectionRun", sinks: List[ResultSink]) -> List[SinkWriteFailure]:
    """
    Hand the run to every sink. Returns the failures; the run itself is untouched.
    """
    failures: List[SinkWriteFailure] = []
    for sink in sinks:
        try:
            sink.write(run)
        except SinkWriteFailure as e:
            logger.error(f"Failed to export {sink.name} output: {e}")
            failures.append(e)
        except Exception as e:
            logger.error(f"Failed to export {sink.name} output: {e}")
            failures.append(SinkWriteFailure(sink.name, str(e), original_error=e))
    return failures
