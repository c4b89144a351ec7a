"""
Reconciliation Pipeline Controller

Runs the four resumable phases in order, starting from a selectable phase:

1. Ingest - load CSV inputs into staging and canonical tables
2. Local Match - resolve staged rows against known identities
3. External Decode - send pending VIN patterns to vPIC
4. Synchronize - fold decoded results into the permanent tables

Each phase reads only persisted state, so any phase can start a run.
"""
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from vehicle_reconciliation.config.settings import ApplicationSettings
from vehicle_reconciliation.models.domain import (
    PipelinePhase,
    RunRequest,
    RunSummary,
    VehicleInfoMode,
)
from vehicle_reconciliation.pipeline.stages.base_stage import BasePipelineStage
from vehicle_reconciliation.pipeline.stages.external_decoding import ExternalDecodingStage
from vehicle_reconciliation.pipeline.stages.identity_synchronization import (
    IdentitySynchronizationStage,
)
from vehicle_reconciliation.pipeline.stages.ingestion import IngestionStage
from vehicle_reconciliation.pipeline.stages.local_matching import LocalMatchingStage
from vehicle_reconciliation.repositories.base import transaction
from vehicle_reconciliation.repositories.catalog_repository import CatalogRepository
from vehicle_reconciliation.services.vpic_client import VpicClient

logger = structlog.get_logger(__name__)


class ReconciliationPipeline:
    """Main pipeline controller"""

    def __init__(
        self,
        session: Session,
        settings: ApplicationSettings,
        vpic_client: Optional[VpicClient] = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.vpic_client = vpic_client or VpicClient(
            settings.vpic.base_url,
            timeout_seconds=settings.vpic.timeout_seconds,
            user_agent=settings.vpic.user_agent,
        )
        self.logger = logger.bind(component="reconciliation_pipeline")

        self.stages: dict[PipelinePhase, BasePipelineStage] = {
            PipelinePhase.INGEST: IngestionStage(session, settings),
            PipelinePhase.LOCAL_MATCH: LocalMatchingStage(session, settings),
            PipelinePhase.EXTERNAL_DECODE: ExternalDecodingStage(
                session, settings, self.vpic_client
            ),
            PipelinePhase.SYNCHRONIZE: IdentitySynchronizationStage(session, settings),
        }

    def phases_to_run(
        self, request: RunRequest, start_phase: PipelinePhase
    ) -> list[PipelinePhase]:
        """
        Phases executed for a request.

        A fresh run without software/vehicle input stops after ingestion, and
        spec mode never reaches the external decoder.
        """
        ordered = PipelinePhase.ordered()
        phases = ordered[ordered.index(start_phase) :]

        if start_phase == PipelinePhase.INGEST and not request.has_vehicle_input:
            return [PipelinePhase.INGEST]
        if request.mode == VehicleInfoMode.SPEC:
            phases = [
                phase
                for phase in phases
                if phase in (PipelinePhase.INGEST, PipelinePhase.LOCAL_MATCH)
            ]
        return phases

    def run(
        self, request: RunRequest, start_phase: PipelinePhase = PipelinePhase.INGEST
    ) -> RunSummary:
        """
        Run the pipeline from ``start_phase``.

        Raises:
            Whatever a phase raises; phases committed before the failure stay
            committed
        """
        phases = self.phases_to_run(request, start_phase)
        self.logger.info(
            "Starting pipeline run",
            start_phase=start_phase.value,
            phases=[phase.value for phase in phases],
            mode=request.mode.value if request.mode else None,
        )

        with transaction(self.session, "seed_year_digits"):
            CatalogRepository(self.session).seed_year_digits()

        summary = RunSummary(start_phase=start_phase)
        for phase in phases:
            summary.phase_results.append(self.stages[phase].process(request))

        self.logger.info(
            "Pipeline run finished",
            phases_completed=len(summary.phase_results),
            total_processing_time_ms=sum(
                result.processing_time_ms for result in summary.phase_results
            ),
        )
        return summary
