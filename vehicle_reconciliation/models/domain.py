"""
Core domain models for the vehicle/software reconciliation pipeline.

Input rows, derived VIN patterns and decoded vehicles are Pydantic models so
that malformed data is rejected at the boundary it enters through.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PipelinePhase(str, Enum):
    """Resumable phases, in execution order"""

    INGEST = "ingest"
    LOCAL_MATCH = "local_match"
    EXTERNAL_DECODE = "external_decode"
    SYNCHRONIZE = "synchronize"

    @classmethod
    def ordered(cls) -> list["PipelinePhase"]:
        return [cls.INGEST, cls.LOCAL_MATCH, cls.EXTERNAL_DECODE, cls.SYNCHRONIZE]


class VehicleInfoMode(str, Enum):
    """How the software/vehicle CSV describes vehicles"""

    VIN = "vin"
    SPEC = "spec"


DISPLACEMENT_QUANTUM = Decimal("0.1")


def is_absent(value: Any) -> bool:
    """
    Absent means None or an empty (whitespace only) string.

    Zero, False and other falsy values are real data and are not absent.
    """
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def blank_to_none(value: Any) -> Any:
    """Normalize absent values to None and strip present strings"""
    if is_absent(value):
        return None
    if isinstance(value, str):
        return value.strip()
    return value


def parse_displacement(value: Any) -> Optional[Decimal]:
    """Parse an engine displacement in litres, rounded to one decimal place"""
    value = blank_to_none(value)
    if value is None:
        return None
    try:
        return Decimal(str(value)).quantize(DISPLACEMENT_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


# ============================================================================
# CSV input rows
# ============================================================================


class HardwareSoftwareRow(BaseModel):
    """Hardware inventory number paired with a manufacturer software number"""

    inventory_no: str = Field(..., min_length=1)
    mfr_software_no: str = Field(..., min_length=1)

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)


class HardwareInterchangeRow(BaseModel):
    """Two inventory numbers that can replace each other"""

    inventory_no: str = Field(..., min_length=1)
    related_inventory_no: str = Field(..., min_length=1)

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)


class VinRecord(BaseModel):
    """Software number identified with a full VIN"""

    record_type: Literal["vin"] = "vin"
    mfr_software_no: str = Field(..., min_length=1)
    vin: str = Field(..., min_length=17, max_length=17)

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("vin")
    @classmethod
    def normalize_vin(cls, v: str) -> str:
        return v.upper()

    @property
    def prefix(self) -> str:
        """WMI + VDS, the first 8 VIN characters"""
        return self.vin[:8]


class SpecRecord(BaseModel):
    """Software number identified with a vehicle specification"""

    record_type: Literal["spec"] = "spec"
    mfr_software_no: str = Field(..., min_length=1)
    make_name: str = Field(..., min_length=1)
    model_name: str = Field(..., min_length=1)
    model_year: int = Field(..., ge=1980, le=2099)
    engine_displacement: Decimal = Field(..., ge=0, lt=100)
    engine_type: Optional[str] = None
    vehicle_trim: Optional[str] = Field(None, max_length=100)
    vehicle_series: Optional[str] = Field(None, max_length=100)

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator(
        "engine_type", "vehicle_trim", "vehicle_series", mode="before"
    )
    @classmethod
    def empty_to_none(cls, v: Any) -> Any:
        return blank_to_none(v)

    @field_validator("engine_displacement", mode="before")
    @classmethod
    def round_displacement(cls, v: Any) -> Any:
        parsed = parse_displacement(v)
        if parsed is None:
            raise ValueError(f"Engine displacement is not a number: {v!r}")
        return parsed

    @property
    def spec_key(self) -> tuple:
        """Fields compared when matching against existing vehicles"""
        return (
            self.make_name,
            self.model_name,
            self.model_year,
            self.engine_displacement,
            self.vehicle_series,
            self.vehicle_trim,
        )


StagedRecord = Annotated[Union[VinRecord, SpecRecord], Field(discriminator="record_type")]


# ============================================================================
# Pattern derivation and decoding
# ============================================================================


class PatternCandidate(BaseModel):
    """One wildcard VIN pattern derived from an 8-character prefix"""

    vin_pattern: str = Field(..., description="LIKE pattern, e.g. 1HGCM826_3%")
    vds_id: int
    year_digit: str = Field(..., min_length=1, max_length=1)
    expected_year: int

    model_config = ConfigDict(frozen=True)


class DecodedVehicle(BaseModel):
    """A pending VIN pattern together with what the decoder said about it"""

    vin_pattern: str
    vds_id: int
    year_digit: str
    expected_year: int

    make_name: Optional[str] = None
    model_name: Optional[str] = None
    model_year: Optional[int] = None
    engine_displacement: Optional[Decimal] = None
    engine_type_name: Optional[str] = None
    vehicle_trim: Optional[str] = None
    vehicle_series: Optional[str] = None

    # Catalog ids attached during synchronization
    make_id: Optional[int] = None
    model_id: Optional[int] = None
    engine_type_id: Optional[int] = None

    @field_validator(
        "make_name",
        "model_name",
        "engine_type_name",
        "vehicle_trim",
        "vehicle_series",
        mode="before",
    )
    @classmethod
    def empty_to_none(cls, v: Any) -> Any:
        return blank_to_none(v)

    @field_validator("model_year", mode="before")
    @classmethod
    def parse_model_year(cls, v: Any) -> Any:
        v = blank_to_none(v)
        if v is None:
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @field_validator("engine_displacement", mode="before")
    @classmethod
    def parse_engine_displacement(cls, v: Any) -> Any:
        return parse_displacement(v)

    @property
    def is_valid(self) -> bool:
        """The decoder recognised the pattern when it returned a model"""
        return self.model_name is not None

    @property
    def year_adjustment(self) -> Optional[int]:
        """Difference between decoded and expected model year"""
        if self.model_year is None:
            return None
        return self.model_year - self.expected_year


# ============================================================================
# Pipeline requests and results
# ============================================================================


class RunRequest(BaseModel):
    """Input files and mode of one pipeline invocation"""

    mode: Optional[VehicleInfoMode] = None
    hardware_software_path: Optional[Path] = None
    software_hardware_path: Optional[Path] = None
    hardware_interchange_path: Optional[Path] = None
    software_vehicle_path: Optional[Path] = None

    @property
    def has_vehicle_input(self) -> bool:
        return self.software_vehicle_path is not None


class PhaseResult(BaseModel):
    """Outcome of one pipeline phase"""

    phase: PipelinePhase
    success: bool = Field(..., description="Phase completed")
    processing_time_ms: int = Field(ge=0)
    stage_data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class RunSummary(BaseModel):
    """Outcome of one pipeline invocation"""

    start_phase: PipelinePhase
    phase_results: list[PhaseResult] = Field(default_factory=list)

    @property
    def completed(self) -> bool:
        return all(result.success for result in self.phase_results)

    def result_for(self, phase: PipelinePhase) -> Optional[PhaseResult]:
        for result in self.phase_results:
            if result.phase == phase:
                return result
        return None


__all__ = [
    "PipelinePhase",
    "VehicleInfoMode",
    "is_absent",
    "blank_to_none",
    "parse_displacement",
    "HardwareSoftwareRow",
    "HardwareInterchangeRow",
    "VinRecord",
    "SpecRecord",
    "StagedRecord",
    "PatternCandidate",
    "DecodedVehicle",
    "RunRequest",
    "PhaseResult",
    "RunSummary",
]
