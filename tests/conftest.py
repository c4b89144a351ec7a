"""
Global pytest configuration and fixtures for reconciliation testing.

Provides an in-memory database with the full schema, settings, CSV writers
and a fake vPIC client shared by all test modules.
"""
import csv
from pathlib import Path
from typing import Any, Callable, Optional
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, func, literal, select
from sqlalchemy.orm import sessionmaker

from vehicle_reconciliation.config.settings import ApplicationSettings
from vehicle_reconciliation.models.database import create_schema
from vehicle_reconciliation.repositories.catalog_repository import CatalogRepository
from vehicle_reconciliation.services.vin import check_digit
from vehicle_reconciliation.services.vpic_client import VpicClient

# Honda Accord, model year 2003, valid check digit
HONDA_VIN = "1HGCM82673A123456"


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite engine with every table created"""
    engine = create_engine("sqlite:///:memory:")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Session over the in-memory database with year digits seeded"""
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    CatalogRepository(session).seed_year_digits()
    session.commit()
    yield session
    session.close()


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture
def settings():
    """Default settings, independent of any .env file"""
    return ApplicationSettings(_env_file=None)


# ============================================================================
# SAMPLE DATA FIXTURES
# ============================================================================


@pytest.fixture
def vin_factory() -> Callable[[str], str]:
    """Replace the 9th character of a VIN with its correct check digit"""

    def make_vin(vin: str) -> str:
        vin = vin.upper()
        return vin[:8] + check_digit(vin) + vin[9:]

    return make_vin


@pytest.fixture
def write_csv(tmp_path) -> Callable[..., Path]:
    """Write rows below a header into a CSV file inside tmp_path"""

    def write(name: str, header: list[str], rows: list[tuple]) -> Path:
        path = tmp_path / name
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(header)
            writer.writerows(rows)
        return path

    return write


def make_result(
    model: str = "",
    make: str = "",
    model_year: str = "",
    displacement: str = "",
    fuel_type: str = "",
    trim: str = "",
    series: str = "",
) -> dict[str, Any]:
    """A vPIC DecodeVINValuesBatch result entry"""
    return {
        "Make": make,
        "Model": model,
        "ModelYear": model_year,
        "DisplacementL": displacement,
        "FuelTypePrimary": fuel_type,
        "Trim": trim,
        "Series": series,
        "ErrorCode": "0" if model else "8",
    }


@pytest.fixture
def vpic_result() -> Callable[..., dict[str, Any]]:
    return make_result


@pytest.fixture
def fake_vpic() -> Callable[[Optional[dict[str, dict[str, Any]]]], MagicMock]:
    """
    Build a VpicClient stand-in.

    Queries found in ``known`` decode to the given result entry; every other
    query decodes to an empty entry. Sent batches are kept on ``.batches``.
    """

    def build(known: Optional[dict[str, dict[str, Any]]] = None) -> MagicMock:
        known = known or {}
        client = MagicMock(spec=VpicClient)
        client.batches = []

        def decode_batch(queries):
            client.batches.append(list(queries))
            return [known.get(query, make_result()) for query in queries]

        client.decode_batch.side_effect = decode_batch
        return client

    return build


@pytest.fixture
def like_matches(session) -> Callable[[str, str], bool]:
    """Evaluate a VIN pattern with the database's LIKE, as local matching does"""

    def matches(value: str, pattern: str) -> bool:
        query = select(func.upper(literal(value)).like(pattern))
        return bool(session.execute(query).scalar_one())

    return matches
