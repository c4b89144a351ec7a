"""
Command line interface for the Vehicle/Software Reconciliation system.

One command loads any combination of the four CSV inputs and runs the
pipeline, or resumes an interrupted run from the unmatched-record store.
"""
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import structlog
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vehicle_reconciliation import __version__
from vehicle_reconciliation.config.settings import (
    ApplicationSettings,
    get_environment_info,
    get_settings,
)
from vehicle_reconciliation.core.exceptions import (
    DecoderTransportError,
    InputError,
    ReconciliationError,
)
from vehicle_reconciliation.models.database import create_schema
from vehicle_reconciliation.models.domain import (
    PipelinePhase,
    RunRequest,
    RunSummary,
    VehicleInfoMode,
)
from vehicle_reconciliation.pipeline.reconciliation_pipeline import ReconciliationPipeline
from vehicle_reconciliation.repositories.base import RepositoryError

console = Console()
logger = structlog.get_logger(__name__)

CSV_PATH = click.Path(exists=True, dir_okay=False, readable=True, path_type=Path)


def configure_logging(verbose: bool, settings: ApplicationSettings) -> None:
    """Configure structlog on top of the standard library logger"""
    level = logging.DEBUG if verbose else getattr(logging, settings.monitoring.log_level)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    if settings.monitoring.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def build_request(
    hs: Optional[Path],
    sv: Optional[Path],
    hh: Optional[Path],
    sh: Optional[Path],
    use_vin: bool,
    use_spec: bool,
    resume_vpic: bool,
    resume_processing: bool,
) -> tuple[RunRequest, PipelinePhase]:
    """
    Validate the flag combination.

    Returns:
        The run request and the phase the run starts at

    Raises:
        InputError: The flags are missing or conflict
    """
    has_csv = any(path is not None for path in (hs, sv, hh, sh))

    if resume_vpic and resume_processing:
        raise InputError("--resume-vpic and --resume-processing are mutually exclusive")
    resuming = resume_vpic or resume_processing
    if resuming and has_csv:
        raise InputError("Resume flags skip ingestion and cannot be combined with CSV inputs")
    if not resuming and not has_csv:
        raise InputError(
            "Nothing to do: pass at least one of --hs, --sv, --hh, --sh "
            "or a resume flag"
        )
    if use_vin and use_spec:
        raise InputError("--use-vin and --use-spec are mutually exclusive")
    if sv is not None and not (use_vin or use_spec):
        raise InputError("--sv requires exactly one of --use-vin or --use-spec")
    if sv is None and (use_vin or use_spec):
        raise InputError("--use-vin and --use-spec only apply together with --sv")

    mode = None
    if use_vin:
        mode = VehicleInfoMode.VIN
    elif use_spec:
        mode = VehicleInfoMode.SPEC

    request = RunRequest(
        mode=mode,
        hardware_software_path=hs,
        software_vehicle_path=sv,
        hardware_interchange_path=hh,
        software_hardware_path=sh,
    )

    if resume_vpic:
        return request, PipelinePhase.EXTERNAL_DECODE
    if resume_processing:
        return request, PipelinePhase.SYNCHRONIZE
    return request, PipelinePhase.INGEST


def render_summary(summary: RunSummary) -> Table:
    table = Table(title="Reconciliation Summary")
    table.add_column("Phase", style="cyan", no_wrap=True)
    table.add_column("Status", style="green")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Details", style="dim")

    for result in summary.phase_results:
        details = ", ".join(f"{key}={value}" for key, value in result.stage_data.items())
        if result.warnings:
            details = "\n".join([details, *[f"[yellow]{w}[/yellow]" for w in result.warnings]])
        table.add_row(
            result.phase.value,
            "✓" if result.success else "✗",
            str(result.processing_time_ms),
            details,
        )
    return table


@click.command()
@click.version_option(version=__version__, prog_name="Vehicle Reconciliation")
@click.option("--hs", type=CSV_PATH, help="Hardware/software CSV (inventory_no, mfr_software_no)")
@click.option("--sv", type=CSV_PATH, help="Software/vehicle CSV (VIN or specification rows)")
@click.option("--hh", type=CSV_PATH, help="Hardware interchange CSV (inventory_no, related_inventory_no)")
@click.option("--sh", type=CSV_PATH, help="Software/hardware CSV (mfr_software_no, inventory_no)")
@click.option("--use-vin", is_flag=True, help="--sv rows carry a VIN")
@click.option("--use-spec", is_flag=True, help="--sv rows carry a vehicle specification")
@click.option("--resume-vpic", is_flag=True, help="Resume at external VIN decoding")
@click.option("--resume-processing", is_flag=True, help="Resume at identity synchronization")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--database-url", help="SQLAlchemy URL overriding DB_DATABASE_URL")
@click.option("--init-db", is_flag=True, help="Create missing tables before running")
def main(
    hs,
    sv,
    hh,
    sh,
    use_vin,
    use_spec,
    resume_vpic,
    resume_processing,
    verbose,
    database_url,
    init_db,
):
    """
    Vehicle/Software Reconciliation

    Imports hardware, software and vehicle records and resolves vehicle
    identities locally or through the NHTSA vPIC decoder.
    """
    settings = get_settings()
    configure_logging(verbose, settings)
    logger.debug("Loaded configuration", **get_environment_info())

    try:
        request, start_phase = build_request(
            hs, sv, hh, sh, use_vin, use_spec, resume_vpic, resume_processing
        )
    except InputError as e:
        console.print(f"[red]Error: {escape(e.message)}[/red]")
        sys.exit(1)

    if verbose:
        console.print(f"[green]Vehicle Reconciliation v{__version__}[/green]")
        console.print(f"[dim]Starting at phase: {start_phase.value}[/dim]")

    engine = create_engine(
        database_url or settings.database.database_url,
        echo=settings.database.database_echo,
    )
    if init_db:
        create_schema(engine)

    session_factory = sessionmaker(bind=engine)
    try:
        with session_factory() as session:
            summary = ReconciliationPipeline(session, settings).run(request, start_phase)
    except DecoderTransportError as e:
        logger.error("Run aborted", **e.to_dict())
        console.print(f"[red]✗ VIN decoding aborted: {escape(e.message)}[/red]")
        console.print("[yellow]Completed batches are saved; rerun with --resume-vpic[/yellow]")
        sys.exit(1)
    except (ReconciliationError, RepositoryError) as e:
        console.print(f"[red]✗ Reconciliation failed: {escape(str(e))}[/red]")
        sys.exit(1)
    finally:
        engine.dispose()

    console.print(render_summary(summary))
    console.print("[green]✓ Reconciliation complete[/green]")


if __name__ == "__main__":
    main()
