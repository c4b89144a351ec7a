"""
Pattern derivation for partial VINs.

Given an 8-character VIN prefix, produce one wildcard pattern per model-year
character together with the model year the current calibration expects for it.
"""
import structlog

from vehicle_reconciliation.models.domain import PatternCandidate
from vehicle_reconciliation.repositories.catalog_repository import CatalogRepository
from vehicle_reconciliation.services.vin import (
    PREFIX_LENGTH,
    YEAR_DIGITS,
    absolute_year,
    build_pattern,
    year_cycle_for_prefix,
)

logger = structlog.get_logger(__name__)


class PatternDeriver:
    """Enumerates candidate VIN patterns for a WMI + VDS prefix"""

    def __init__(self, catalog: CatalogRepository) -> None:
        self.catalog = catalog
        self.logger = logger.bind(component="pattern_deriver")

    def derive(self, prefix: str) -> list[PatternCandidate]:
        """
        Derive candidate patterns for a prefix.

        Creates the WMI and VDS rows when the prefix is new.

        Args:
            prefix: First 8 characters of a VIN

        Returns:
            Exactly one candidate per model-year character, in cycle order
        """
        prefix = prefix.upper()
        if len(prefix) != PREFIX_LENGTH:
            raise ValueError(f"VIN prefix must be {PREFIX_LENGTH} characters: {prefix!r}")

        vds = self.catalog.get_or_create_prefix(prefix)
        sequences = self.catalog.year_sequences()
        cycle = year_cycle_for_prefix(prefix)

        candidates = [
            PatternCandidate(
                vin_pattern=build_pattern(prefix, digit),
                vds_id=vds.vds_id,
                year_digit=digit,
                expected_year=absolute_year(sequences[digit], cycle, vds.year_increment),
            )
            for digit in YEAR_DIGITS
        ]

        self.logger.debug(
            "Derived VIN patterns",
            prefix=prefix,
            vds_id=vds.vds_id,
            year_increment=vds.year_increment,
            candidates=len(candidates),
        )
        return candidates
