#!/usr/bin/env python3
"""
CLI for the claim-intake pipeline.

Usage:
    python -m src.intake.cli ingest fixtures/payload.json
    python -m src.intake.cli run --gazetteer data/villages.geojson
    python -m src.intake.cli queue
    python -m src.intake.cli review JOB-1234 approve --reviewer r.sharma
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..utils.config import get_settings
from .errors import PipelineError
from .pipeline import IntakePipeline, create_pipeline
from .schema import Job, JobStage, ReviewDecision, ReviewVerdict

console = Console()

LAYER_OPTIONS = {
    "protected": "protected_layer_path",
    "forest": "forest_layer_path",
    "revenue": "revenue_layer_path",
}

STAGE_STYLES = {
    JobStage.COMMITTED: "green",
    JobStage.REJECTED: "red",
    JobStage.FAILED: "red",
    JobStage.REVIEW_PENDING: "yellow",
}


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def read_json_file(path: str) -> Any:
    """Read JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def parse_layer_args(values: Optional[List[str]]) -> Dict[str, Path]:
    """Parse repeated TYPE=PATH layer options."""
    layers = {}
    for value in values or []:
        kind, _, path = value.partition("=")
        if kind not in LAYER_OPTIONS or not path:
            raise argparse.ArgumentTypeError(
                f"--layer expects TYPE=PATH with TYPE in {', '.join(LAYER_OPTIONS)}; got {value!r}"
            )
        layers[LAYER_OPTIONS[kind]] = Path(path)
    return layers


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Process forest-rights claim extraction payloads',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Queue a payload and process everything
  python -m src.intake.cli ingest fixtures/payload.json
  python -m src.intake.cli run --gazetteer data/villages.geojson --layer protected=data/protected.geojson

  # Inspect
  python -m src.intake.cli show JOB-1234
  python -m src.intake.cli queue

  # Review
  python -m src.intake.cli review JOB-1234 request_info --reviewer r.sharma --set village=Khairwada
        """
    )
    parser.add_argument('--db', type=str, help='SQLite database path (default: INTAKE_DATABASE_PATH)')
    parser.add_argument('--gazetteer', type=str, help='Village boundaries GeoJSON')
    parser.add_argument(
        '--layer',
        action='append',
        metavar='TYPE=PATH',
        help='Spatial layer GeoJSON (protected, forest, revenue); repeatable'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    sub = parser.add_subparsers(dest='command', required=True)

    ingest = sub.add_parser('ingest', help='Queue a payload JSON file')
    ingest.add_argument('file', type=str, help='Payload JSON (object or list of objects)')
    ingest.add_argument('--job-id', type=str, help='Job id for a single payload')

    run = sub.add_parser('run', help='Process jobs until none are actionable')
    run.add_argument('--max-steps', type=int, default=10_000)

    show = sub.add_parser('show', help='Show one job')
    show.add_argument('job_id', type=str)

    sub.add_parser('queue', help='List jobs pending review')
    sub.add_parser('jobs', help='List recent jobs')

    review = sub.add_parser('review', help='Submit a review decision')
    review.add_argument('job_id', type=str)
    review.add_argument('verdict', choices=[v.value for v in ReviewVerdict])
    review.add_argument('--reviewer', type=str, required=True, help='Reviewer id')
    review.add_argument('--reason', type=str, help='Reason (for reject)')
    review.add_argument(
        '--set',
        action='append',
        metavar='FIELD=VALUE',
        default=[],
        help='Corrected field value (for request_info); repeatable'
    )

    cancel = sub.add_parser('cancel', help='Cancel a job')
    cancel.add_argument('job_id', type=str)

    sub.add_parser('sla-check', help='Report jobs pending review past the SLA')

    return parser.parse_args(argv)


def build_pipeline(args: argparse.Namespace) -> IntakePipeline:
    """Create the pipeline from settings plus command-line overrides."""
    overrides: Dict[str, Any] = parse_layer_args(args.layer)
    if args.db:
        overrides['database_path'] = Path(args.db)
    if args.gazetteer:
        overrides['gazetteer_path'] = Path(args.gazetteer)
    settings = get_settings().model_copy(update=overrides)
    return create_pipeline(settings)


# =============================================================================
# Rendering
# =============================================================================


def stage_label(stage: JobStage) -> str:
    style = STAGE_STYLES.get(stage)
    return f"[{style}]{stage.value}[/{style}]" if style else stage.value


def make_jobs_table(jobs: List[Job], title: str) -> Table:
    """Summary table of jobs."""
    table = Table(title=title, box=box.ROUNDED, header_style="bold cyan")
    table.add_column("Job ID", style="bold")
    table.add_column("Stage")
    table.add_column("Confidence", justify="right")
    table.add_column("Claim #")
    table.add_column("Max severity")
    table.add_column("Dup %", justify="right")
    table.add_column("Flags")

    for job in jobs:
        severity = job.max_severity
        table.add_row(
            job.job_id,
            stage_label(job.stage),
            f"{job.confidence:.1f}",
            job.candidate.claim_number if job.candidate and job.candidate.claim_number else "",
            severity.value if severity else "",
            f"{job.duplicate_probability:.0f}" if job.duplicate_probability else "",
            ", ".join(job.flags),
        )
    return table


def print_job(job: Job) -> None:
    """Print one job as a detail panel."""
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("Stage", stage_label(job.stage))
    table.add_row("Confidence", f"{job.confidence:.1f}")
    if job.candidate:
        c = job.candidate
        table.add_row("Claim #", c.claim_number or "")
        table.add_row("Region", c.region_code or "")
        table.add_row("Patta holder", c.patta_holder or "")
        table.add_row("Village", c.hierarchy.village if c.hierarchy else "")
        table.add_row("Location", c.location_source.value)
        if c.area_ha is not None:
            table.add_row("Area (ha)", f"{c.area_ha:.3f}")
    table.add_row("Flags", ", ".join(job.flags))
    table.add_row("Attempts", ", ".join(f"{k}={v}" for k, v in job.attempts.items()))
    for issue in job.issues:
        table.add_row("Issue", issue)
    for dup in job.duplicates:
        table.add_row("Duplicate", f"{dup.claim_number} ({dup.probability:.0f}%)")
    for conflict in job.conflicts:
        table.add_row(
            "Conflict",
            f"{conflict.layer_type.value} {conflict.feature_id}: "
            f"{conflict.overlap_pct:.1f}% ({conflict.severity.value})",
        )
    if job.outcome:
        table.add_row("Outcome", f"{job.outcome.value}: {job.outcome_reason or ''}")
    if job.last_error:
        table.add_row("Last error", f"[red]{job.last_error}[/red]")
    if job.committed_claim_id:
        table.add_row("Claim ID", job.committed_claim_id)

    console.print(Panel(table, title=f"Job {job.job_id}", box=box.ROUNDED))


def parse_corrections(values: List[str]) -> Dict[str, str]:
    corrections = {}
    for value in values:
        name, sep, field_value = value.partition("=")
        if not sep:
            raise ValueError(f"--set expects FIELD=VALUE, got {value!r}")
        corrections[name.strip()] = field_value
    return corrections


# =============================================================================
# Entry point
# =============================================================================


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        pipeline = build_pipeline(args)

        if args.command == 'ingest':
            data = read_json_file(args.file)
            payloads = data if isinstance(data, list) else [data]
            for i, payload in enumerate(payloads):
                job_id = args.job_id if args.job_id and len(payloads) == 1 else None
                job = pipeline.ingest(payload, job_id=job_id)
                console.print(f"Queued [bold]{job.job_id}[/bold] ({i + 1}/{len(payloads)})")

        elif args.command == 'run':
            steps = pipeline.run_until_idle(max_steps=args.max_steps)
            logger.info(f"Processed {steps} stage step(s)")
            console.print(make_jobs_table(pipeline.jobs.list_jobs(limit=50), "Jobs"))

        elif args.command == 'show':
            print_job(pipeline.get_job(args.job_id))

        elif args.command == 'queue':
            console.print(make_jobs_table(pipeline.review_queue(), "Review queue"))

        elif args.command == 'jobs':
            console.print(make_jobs_table(pipeline.jobs.list_jobs(limit=50), "Jobs"))

        elif args.command == 'review':
            decision = ReviewDecision(
                reviewer_id=args.reviewer,
                verdict=ReviewVerdict(args.verdict),
                reason=args.reason,
                corrected_fields=parse_corrections(args.set),
            )
            print_job(pipeline.submit_review(args.job_id, decision))

        elif args.command == 'cancel':
            print_job(pipeline.cancel(args.job_id))

        elif args.command == 'sla-check':
            breaches = pipeline.check_review_sla()
            for breach in breaches:
                console.print(f"[yellow]{breach.describe()}[/yellow]")
            console.print(f"{len(breaches)} SLA breach(es) reported")

    except (PipelineError, ValueError, argparse.ArgumentTypeError) as e:
        logger.error(str(e))
        return 1
    except FileNotFoundError as e:
        logger.error(f"File not found: {e.filename}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
