"""
Unit tests for the identity synchronization phase.
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from vehicle_reconciliation.models.database import (
    EngineTypeTable,
    MakeTable,
    ModelTable,
    VdsTable,
    VehicleIdentityTable,
    VehicleSoftwareMapTable,
)
from vehicle_reconciliation.models.domain import DecodedVehicle, RunRequest
from vehicle_reconciliation.pipeline.stages.identity_synchronization import (
    IdentitySynchronizationStage,
    calibrate_year_increments,
    title_case_make,
)
from vehicle_reconciliation.repositories.catalog_repository import CatalogRepository
from vehicle_reconciliation.repositories.identity_repository import IdentityRepository
from vehicle_reconciliation.repositories.unmatched_repository import UnmatchedRecordStore
from vehicle_reconciliation.services.pattern_deriver import PatternDeriver


@pytest.fixture
def stage(session, settings):
    return IdentitySynchronizationStage(session, settings)


@pytest.fixture
def decode(session):
    """Enqueue a prefix and record decoder results for some of its digits"""

    def decode(prefix, results):
        candidates = {
            c.year_digit: c for c in PatternDeriver(CatalogRepository(session)).derive(prefix)
        }
        store = UnmatchedRecordStore(session)
        store.enqueue_candidates(candidates.values())
        for digit, fields in results.items():
            store.mark_matched(DecodedVehicle(**candidates[digit].model_dump(), **fields))
        store.purge_unresolved()
        session.commit()
        return candidates

    return decode


def count(session, table):
    return session.execute(select(func.count()).select_from(table)).scalar_one()


def accord(**fields):
    values = {
        "make_name": "HONDA",
        "model_name": "Accord",
        "model_year": "2003",
        "engine_displacement": "2.4",
        "engine_type_name": "Gasoline",
    }
    values.update(fields)
    return values


class TestHelpers:
    """Test make normalization and calibration"""

    def test_title_case_make(self):
        assert title_case_make("MERCEDES-BENZ") == "Mercedes-Benz"
        assert title_case_make(None) is None

    def test_first_non_zero_adjustment_wins(self):
        def vehicle(vds_id, expected, decoded):
            return DecodedVehicle(
                vin_pattern=f"P{vds_id}{expected}",
                vds_id=vds_id,
                year_digit="3",
                expected_year=expected,
                model_year=decoded,
            )

        increments = calibrate_year_increments(
            [
                vehicle(1, 2003, 2003),
                vehicle(1, 2003, None),
                vehicle(1, 2004, 2005),
                vehicle(1, 2005, 2008),
                vehicle(2, 2010, 2009),
                vehicle(3, 2010, 2010),
            ]
        )

        assert increments == {1: 1, 2: -1}


class TestSynchronization:
    """Test folding decoded patterns into permanent tables"""

    def test_inserts_identity_and_catalog(self, session, stage, decode):
        decode("1HGCM826", {"3": accord(vehicle_trim="", vehicle_series="EX")})

        result = stage.process(RunRequest())

        identity = session.execute(select(VehicleIdentityTable)).scalar_one()
        assert identity.year_digit == "3"
        assert identity.year_cycle == 0
        assert identity.engine_displacement == Decimal("2.4")
        assert identity.vehicle_trim is None
        assert identity.vehicle_series == "EX"
        assert session.execute(select(MakeTable.make_name)).scalar_one() == "Honda"
        assert result.stage_data["identities_inserted"] == 1
        assert UnmatchedRecordStore(session).list_matched() == []

    def test_second_cycle_from_vds(self, session, stage, decode):
        decode("5YJ3E1EA", {"K": {"make_name": "TESLA", "model_name": "Model 3", "model_year": "2019"}})

        stage.process(RunRequest())

        identity = session.execute(select(VehicleIdentityTable)).scalar_one()
        assert identity.year_cycle == 1
        assert identity.engine_type_id is None

    def test_existing_identity_updated(self, session, stage, decode):
        vds = CatalogRepository(session).get_or_create_prefix("1HGCM826")
        [vehicle_id] = IdentityRepository(session).insert_identities(
            [{"vds_id": vds.vds_id, "year_digit": "3", "year_cycle": 0, "vehicle_trim": "LX"}]
        )
        session.commit()
        decode("1HGCM826", {"3": accord()})

        result = stage.process(RunRequest())

        session.expire_all()
        identity = session.get(VehicleIdentityTable, vehicle_id)
        assert count(session, VehicleIdentityTable) == 1
        assert identity.model_id is not None
        assert identity.vehicle_trim is None
        assert result.stage_data["identities_updated"] == 1

    def test_make_spellings_share_one_model(self, session, stage, decode):
        decode(
            "1HGCM826",
            {
                "3": accord(make_name="HONDA", model_name="Civic"),
                "4": accord(make_name="Honda", model_name="Civic", model_year="2004"),
            },
        )

        stage.process(RunRequest())

        assert count(session, MakeTable) == 1
        assert count(session, ModelTable) == 1
        assert count(session, EngineTypeTable) == 1
        assert count(session, VehicleIdentityTable) == 2

    def test_no_empty_strings_stored(self, session, stage, decode):
        decode(
            "1HGCM826",
            {"3": accord(engine_type_name="", vehicle_trim="", vehicle_series="", engine_displacement="")},
        )

        stage.process(RunRequest())

        identity = session.execute(select(VehicleIdentityTable)).scalar_one()
        assert identity.engine_type_id is None
        assert identity.engine_displacement is None
        assert identity.vehicle_trim is None
        assert identity.vehicle_series is None
        assert count(session, EngineTypeTable) == 0

    def test_year_increment_recalibrated(self, session, stage, decode):
        candidates = decode("1HGCM826", {"3": accord(model_year="2004")})

        result = stage.process(RunRequest())

        session.expire_all()
        vds = session.get(VdsTable, candidates["3"].vds_id)
        assert vds.year_increment == 1
        assert result.stage_data["year_increments_adjusted"] == 1

    def test_matching_year_leaves_increment(self, session, stage, decode):
        candidates = decode("1HGCM826", {"3": accord(model_year="2003")})

        stage.process(RunRequest())

        session.expire_all()
        assert session.get(VdsTable, candidates["3"].vds_id).year_increment == 0

    def test_waiting_software_mapped(self, session, stage, decode):
        decode("1HGCM826", {"3": accord()})
        store = UnmatchedRecordStore(session)
        store.enqueue_software_many([("1HGCM826_3%", 1), ("1HGCM826_4%", 2)])
        session.commit()

        result = stage.process(RunRequest())

        assert count(session, VehicleSoftwareMapTable) == 1
        assert store.list_software() == [("1HGCM826_4%", 2)]
        assert result.stage_data["software_still_waiting"] == 1
        assert result.warnings

    def test_rerun_is_noop(self, session, stage, decode):
        decode("1HGCM826", {"3": accord()})
        stage.process(RunRequest())

        result = stage.process(RunRequest())

        assert result.stage_data["decoded_records"] == 0
        assert count(session, VehicleIdentityTable) == 1
