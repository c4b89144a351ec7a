"""
Phase 3: External Decoding

Sends pending VIN patterns to the vPIC batch decoder. Every batch is committed
before the next request goes out, so an aborted run loses at most the batch in
flight and a resumed run only sends what is still pending.
"""
from typing import Any, Optional

from sqlalchemy.orm import Session

from vehicle_reconciliation.config.settings import ApplicationSettings
from vehicle_reconciliation.core.exceptions import DecoderTransportError
from vehicle_reconciliation.models.domain import (
    DecodedVehicle,
    PatternCandidate,
    PipelinePhase,
    RunRequest,
)
from vehicle_reconciliation.pipeline.stages.base_stage import BasePipelineStage
from vehicle_reconciliation.repositories.base import transaction
from vehicle_reconciliation.repositories.unmatched_repository import UnmatchedRecordStore
from vehicle_reconciliation.services.vin import vpic_query_for
from vehicle_reconciliation.services.vpic_client import VpicClient

# vPIC result field -> DecodedVehicle field
RESULT_FIELDS = {
    "Make": "make_name",
    "Model": "model_name",
    "ModelYear": "model_year",
    "DisplacementL": "engine_displacement",
    "FuelTypePrimary": "engine_type_name",
    "Trim": "vehicle_trim",
    "Series": "vehicle_series",
}


class ExternalDecodingStage(BasePipelineStage):
    """Resolve pending patterns through the external VIN decoder"""

    def __init__(
        self, session: Session, settings: ApplicationSettings, client: VpicClient
    ) -> None:
        super().__init__(PipelinePhase.EXTERNAL_DECODE, session, settings)
        self.client = client
        self.batch_size = settings.vpic.batch_size
        self.store = UnmatchedRecordStore(session)

    def _execute_stage(self, request: RunRequest) -> dict[str, Any]:
        pending = self.store.list_pending()
        batches = [
            pending[start : start + self.batch_size]
            for start in range(0, len(pending), self.batch_size)
        ]

        matched = 0
        undecoded = 0
        for number, batch in enumerate(batches, start=1):
            self.logger.info(
                f"Sending batch {number} of {len(batches)}",
                batch_number=number,
                total_batches=len(batches),
                batch_size=len(batch),
            )
            try:
                results = self.client.decode_batch(
                    [vpic_query_for(candidate.vin_pattern) for candidate in batch]
                )
            except DecoderTransportError as e:
                raise DecoderTransportError(
                    e.message, batch_number=number, original_exception=e.original_exception
                ) from e

            with transaction(self.session, f"decode_batch_{number}"):
                for position, candidate in enumerate(batch):
                    result = results[position] if position < len(results) else None
                    decoded = self.parse_result(candidate, result)
                    if decoded is not None and decoded.is_valid:
                        self.store.mark_matched(decoded)
                        matched += 1
                    else:
                        self.store.mark_attempted(candidate.vin_pattern)
                        undecoded += 1

        with transaction(self.session, "purge_unresolved"):
            purged = self.store.purge_unresolved()

        return {
            "patterns_pending": len(pending),
            "batches_sent": len(batches),
            "patterns_decoded": matched,
            "patterns_undecoded": undecoded,
            "patterns_purged": purged,
        }

    def _extract_warnings(self, stage_data: dict[str, Any]) -> list[str]:
        if stage_data["patterns_pending"] and not stage_data["patterns_decoded"]:
            return ["The decoder recognised none of the pending patterns"]
        return []

    @staticmethod
    def parse_result(
        candidate: PatternCandidate, result: Optional[dict[str, Any]]
    ) -> Optional[DecodedVehicle]:
        """Combine a pending pattern with its decoder result entry"""
        if not isinstance(result, dict):
            return None
        return DecodedVehicle(
            **candidate.model_dump(),
            **{field: result.get(key) for key, field in RESULT_FIELDS.items()},
        )
