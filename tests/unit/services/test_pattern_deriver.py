"""
Unit tests for VIN pattern derivation.
"""
import pytest
from sqlalchemy import func, select

from vehicle_reconciliation.models.database import VdsTable, WmiTable
from vehicle_reconciliation.repositories.catalog_repository import CatalogRepository
from vehicle_reconciliation.services.pattern_deriver import PatternDeriver
from vehicle_reconciliation.services.vin import YEAR_DIGITS


@pytest.fixture
def deriver(session):
    return PatternDeriver(CatalogRepository(session))


class TestPatternDeriver:
    """Test candidate generation for an 8-character prefix"""

    def test_one_candidate_per_year_digit(self, deriver):
        candidates = deriver.derive("1HGCM826")

        assert [candidate.year_digit for candidate in candidates] == list(YEAR_DIGITS)
        assert len({candidate.vin_pattern for candidate in candidates}) == 30

    def test_pattern_format(self, deriver):
        candidates = deriver.derive("1hgcm826")

        assert candidates[0].vin_pattern == "1HGCM826_A%"
        assert candidates[-1].vin_pattern == "1HGCM826_9%"

    def test_expected_years_first_cycle(self, deriver):
        by_digit = {c.year_digit: c.expected_year for c in deriver.derive("1HGCM826")}

        assert by_digit["A"] == 1980
        assert by_digit["3"] == 2003
        assert by_digit["9"] == 2009

    def test_expected_years_second_cycle(self, deriver):
        by_digit = {c.year_digit: c.expected_year for c in deriver.derive("5YJ3E1EA")}

        assert by_digit["A"] == 2010
        assert by_digit["K"] == 2019

    def test_year_increment_shifts_expected_year(self, session, deriver):
        vds = CatalogRepository(session).get_or_create_prefix("1HGCM826")
        vds.year_increment = 2
        session.flush()

        by_digit = {c.year_digit: c.expected_year for c in deriver.derive("1HGCM826")}

        assert by_digit["3"] == 2005

    def test_creates_wmi_and_vds_once(self, session, deriver):
        first = deriver.derive("1HGCM826")
        second = deriver.derive("1HGCM826")

        assert first == second
        assert session.execute(select(func.count()).select_from(WmiTable)).scalar_one() == 1
        assert session.execute(select(func.count()).select_from(VdsTable)).scalar_one() == 1

    def test_vin_matches_its_own_candidate(self, deriver, vin_factory, like_matches):
        vin = vin_factory("1HGCM82603A123456")
        candidates = deriver.derive(vin[:8])

        matching = [c for c in candidates if like_matches(vin, c.vin_pattern)]

        assert len(matching) == 1
        assert matching[0].year_digit == vin[9]

    def test_invalid_prefix_length(self, deriver):
        with pytest.raises(ValueError):
            deriver.derive("1HGCM82")
