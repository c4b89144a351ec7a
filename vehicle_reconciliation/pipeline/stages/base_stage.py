"""
Base pipeline phase implementation.

Provides the timing, logging and result building shared by every phase.
Phases own their commits; anything they raise propagates to the caller after
being logged, so a failed phase never reports success.
"""
import time
from abc import ABC, abstractmethod
from typing import Any

import structlog
from sqlalchemy.orm import Session

from vehicle_reconciliation.config.settings import ApplicationSettings
from vehicle_reconciliation.models.domain import PhaseResult, PipelinePhase, RunRequest

logger = structlog.get_logger(__name__)


class BasePipelineStage(ABC):
    """
    Abstract base class for all pipeline phases.

    Provides:
    - Consistent error logging
    - Processing time measurement
    - Standard processing interface
    """

    def __init__(
        self, phase: PipelinePhase, session: Session, settings: ApplicationSettings
    ) -> None:
        self.phase = phase
        self.session = session
        self.settings = settings
        self.logger = logger.bind(stage=phase.value)

    def process(self, request: RunRequest) -> PhaseResult:
        """
        Main processing entry point with timing and error logging.

        Args:
            request: Input files and mode of the current run

        Returns:
            Phase result with the counters reported by the phase
        """
        start_time = time.time()
        self.logger.info("Starting phase")

        try:
            stage_data = self._execute_stage(request)
        except Exception as e:
            processing_time_ms = int((time.time() - start_time) * 1000)
            self.logger.error(
                "Phase failed",
                error=str(e),
                error_type=type(e).__name__,
                processing_time_ms=processing_time_ms,
            )
            raise

        processing_time_ms = int((time.time() - start_time) * 1000)
        warnings = self._extract_warnings(stage_data)

        self.logger.info(
            "Phase completed successfully",
            processing_time_ms=processing_time_ms,
            warnings_count=len(warnings),
            **stage_data,
        )

        return PhaseResult(
            phase=self.phase,
            success=True,
            processing_time_ms=processing_time_ms,
            stage_data=stage_data,
            warnings=warnings,
        )

    @abstractmethod
    def _execute_stage(self, request: RunRequest) -> dict[str, Any]:
        """
        Execute phase-specific processing logic.

        Returns:
            Counters describing what the phase did
        """

    def _extract_warnings(self, stage_data: dict[str, Any]) -> list[str]:
        """Warnings derived from the phase counters; override per phase"""
        return []
