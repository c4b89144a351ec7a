"""
Phase 1: Ingestion

Bulk loads the CSV inputs. Hardware/software pairs are staged and folded into
the inventory and software tables, interchange pairs are recorded, and
software/vehicle rows are validated and staged for local matching. The whole
phase is one transaction.
"""
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from vehicle_reconciliation.config.settings import ApplicationSettings
from vehicle_reconciliation.core.exceptions import InputError
from vehicle_reconciliation.models.domain import (
    HardwareInterchangeRow,
    HardwareSoftwareRow,
    PipelinePhase,
    RunRequest,
    SpecRecord,
    VehicleInfoMode,
    VinRecord,
    is_absent,
)
from vehicle_reconciliation.pipeline.stages.base_stage import BasePipelineStage
from vehicle_reconciliation.repositories.base import transaction
from vehicle_reconciliation.repositories.inventory_repository import InventoryRepository
from vehicle_reconciliation.repositories.staging_repository import StagingRepository
from vehicle_reconciliation.services.csv_reader import read_csv_rows
from vehicle_reconciliation.services.vin import is_valid_vin

SPEC_COLUMNS = (
    "mfr_software_no",
    "make_name",
    "model_name",
    "model_year",
    "engine_displacement",
    "engine_type",
    "vehicle_trim",
    "vehicle_series",
)


class IngestionStage(BasePipelineStage):
    """Load CSV inputs into staging and the canonical inventory tables"""

    def __init__(self, session: Session, settings: ApplicationSettings) -> None:
        super().__init__(PipelinePhase.INGEST, session, settings)
        self.inventory = InventoryRepository(session)
        self.staging = StagingRepository(session)

    def _execute_stage(self, request: RunRequest) -> dict[str, Any]:
        stage_data: dict[str, Any] = {}

        with transaction(self.session, "ingest"):
            pairs: list[HardwareSoftwareRow] = []
            if request.hardware_software_path:
                pairs += self._read_hardware_software(request.hardware_software_path)
            if request.software_hardware_path:
                pairs += self._read_hardware_software(
                    request.software_hardware_path, reversed_columns=True
                )

            if pairs:
                self.inventory.clear_staging()
                stage_data["hardware_software_staged"] = (
                    self.inventory.stage_hardware_software(pairs)
                )
                inventory_inserted, software_inserted = self.inventory.reconcile_staged()
                stage_data["inventory_inserted"] = inventory_inserted
                stage_data["software_inserted"] = software_inserted

            if request.hardware_interchange_path:
                interchanges = self._read_interchanges(request.hardware_interchange_path)
                stage_data["interchanges_inserted"] = self.inventory.add_interchanges(
                    interchanges
                )

            if request.software_vehicle_path:
                if request.mode is None:
                    raise InputError(
                        "A vehicle info mode is required with software/vehicle input",
                        phase=self.phase.value,
                    )
                records = self._read_vehicle_records(
                    request.software_vehicle_path, request.mode
                )
                self.staging.clear()
                stage_data["vehicle_records_staged"] = self.staging.stage(records)
                stage_data["vehicle_records_with_software"] = (
                    self.staging.resolve_software_ids()
                )
                stage_data["vehicle_records_without_software"] = (
                    self.staging.count_without_software()
                )

        return stage_data

    def _extract_warnings(self, stage_data: dict[str, Any]) -> list[str]:
        warnings = []
        missing = stage_data.get("vehicle_records_without_software", 0)
        if missing:
            warnings.append(
                f"{missing} software/vehicle rows reference unknown software numbers"
            )
        return warnings

    # ------------------------------------------------------------------
    # CSV parsing
    # ------------------------------------------------------------------

    def _read_hardware_software(
        self, path: Path, reversed_columns: bool = False
    ) -> list[HardwareSoftwareRow]:
        rows: list[HardwareSoftwareRow] = []
        dropped = 0
        for first, second in read_csv_rows(path, 2):
            inventory_no, software_no = (second, first) if reversed_columns else (first, second)
            try:
                rows.append(
                    HardwareSoftwareRow(inventory_no=inventory_no, mfr_software_no=software_no)
                )
            except ValidationError:
                dropped += 1
        self.logger.debug(
            "Parsed hardware/software rows", path=str(path), rows=len(rows), dropped=dropped
        )
        return rows

    def _read_interchanges(self, path: Path) -> list[HardwareInterchangeRow]:
        rows: list[HardwareInterchangeRow] = []
        dropped = 0
        for inventory_no, related_inventory_no in read_csv_rows(path, 2):
            try:
                rows.append(
                    HardwareInterchangeRow(
                        inventory_no=inventory_no, related_inventory_no=related_inventory_no
                    )
                )
            except ValidationError:
                dropped += 1
        self.logger.debug(
            "Parsed hardware interchange rows", path=str(path), rows=len(rows), dropped=dropped
        )
        return rows

    def _read_vehicle_records(
        self, path: Path, mode: VehicleInfoMode
    ) -> list[Union[VinRecord, SpecRecord]]:
        records: list[Union[VinRecord, SpecRecord]] = []
        dropped = 0
        column_count = 2 if mode == VehicleInfoMode.VIN else len(SPEC_COLUMNS)

        for line in read_csv_rows(path, column_count):
            if mode == VehicleInfoMode.VIN:
                record = self._parse_vin_row(line)
            else:
                record = self._parse_spec_row(line)
            if record is None:
                dropped += 1
                self.logger.debug("Dropped software/vehicle row", row=line)
                continue
            records.append(record)

        self.logger.debug(
            "Parsed software/vehicle rows",
            path=str(path),
            mode=mode.value,
            rows=len(records),
            dropped=dropped,
        )
        return records

    def _parse_vin_row(self, line: tuple[str, ...]) -> Optional[VinRecord]:
        software_no, vin = line
        if not is_valid_vin(
            vin.strip(), enforce_check_digit=self.settings.pipeline.enforce_check_digit
        ):
            return None
        try:
            return VinRecord(mfr_software_no=software_no, vin=vin)
        except ValidationError:
            return None

    def _parse_spec_row(self, line: tuple[str, ...]) -> Optional[SpecRecord]:
        values = dict(zip(SPEC_COLUMNS, line))
        if is_absent(values["engine_type"]):
            values["engine_type"] = self.settings.pipeline.default_engine_type
        try:
            return SpecRecord(**values)
        except ValidationError:
            return None
