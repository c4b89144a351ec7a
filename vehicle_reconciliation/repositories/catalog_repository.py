"""
Reference catalog repository.

Reads and writes the normalized lookup tables: WMI/VDS codes, model-year
characters, makes, models and engine types. WMI and VDS rows are created on
first use; makes, models and engine types are synchronized by inserting only
the names that are missing.
"""
from collections.abc import Iterable, Mapping
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vehicle_reconciliation.models.database import (
    EngineTypeTable,
    MakeTable,
    ModelTable,
    VdsTable,
    WmiTable,
    YearDigitTable,
)
from vehicle_reconciliation.models.domain import is_absent
from vehicle_reconciliation.repositories.base import BaseRepository, insert_missing
from vehicle_reconciliation.services.vin import YEAR_DIGITS


class CatalogRepository(BaseRepository):
    """Get-or-create and diff-insert access to the reference catalog"""

    def __init__(self, session: Session) -> None:
        super().__init__(session)
        self._year_sequences: Optional[dict[str, int]] = None

    # ------------------------------------------------------------------
    # Model-year characters
    # ------------------------------------------------------------------

    def seed_year_digits(self) -> int:
        """Insert the 30 model-year characters that are missing"""
        try:
            rows = [
                {"year_digit": digit, "sequence": sequence}
                for sequence, digit in enumerate(YEAR_DIGITS, start=1)
            ]
            inserted = insert_missing(self.session, YearDigitTable, rows, ["year_digit"])
            self._year_sequences = None
            return inserted
        except SQLAlchemyError as e:
            raise self._fail("seed year digits", e) from e

    def year_sequences(self) -> dict[str, int]:
        """Model-year character to its 1..30 sequence"""
        if self._year_sequences is None:
            rows = self.session.execute(
                select(YearDigitTable.year_digit, YearDigitTable.sequence)
            )
            self._year_sequences = {digit: sequence for digit, sequence in rows}
        return self._year_sequences

    # ------------------------------------------------------------------
    # WMI / VDS
    # ------------------------------------------------------------------

    def get_or_create_wmi(self, wmi_code: str) -> WmiTable:
        wmi_code = wmi_code.upper()
        try:
            wmi = self.session.execute(
                select(WmiTable).where(WmiTable.wmi_code == wmi_code)
            ).scalar_one_or_none()
            if wmi is None:
                wmi = WmiTable(wmi_code=wmi_code)
                self.session.add(wmi)
                self.session.flush()
                self.logger.debug("Created WMI", wmi_code=wmi_code, wmi_id=wmi.wmi_id)
            return wmi
        except SQLAlchemyError as e:
            raise self._fail("get or create WMI", e, wmi_code=wmi_code) from e

    def get_or_create_vds(self, wmi_id: int, vds_code: str) -> VdsTable:
        vds_code = vds_code.upper()
        try:
            vds = self.session.execute(
                select(VdsTable).where(
                    VdsTable.wmi_id == wmi_id, VdsTable.vds_code == vds_code
                )
            ).scalar_one_or_none()
            if vds is None:
                vds = VdsTable(wmi_id=wmi_id, vds_code=vds_code, year_increment=0)
                self.session.add(vds)
                self.session.flush()
                self.logger.debug("Created VDS", vds_code=vds_code, vds_id=vds.vds_id)
            return vds
        except SQLAlchemyError as e:
            raise self._fail("get or create VDS", e, vds_code=vds_code) from e

    def get_or_create_prefix(self, prefix: str) -> VdsTable:
        """WMI and VDS rows for an 8-character VIN prefix"""
        prefix = prefix.upper()
        if len(prefix) != 8:
            raise ValueError(f"VIN prefix must be 8 characters: {prefix!r}")
        wmi = self.get_or_create_wmi(prefix[:3])
        return self.get_or_create_vds(wmi.wmi_id, prefix[3:])

    def update_year_increments(self, increments: Mapping[int, int]) -> int:
        """Persist new calibration offsets per VDS"""
        try:
            for vds_id, increment in increments.items():
                self.session.execute(
                    update(VdsTable)
                    .where(VdsTable.vds_id == vds_id)
                    .values(year_increment=increment)
                )
            return len(increments)
        except SQLAlchemyError as e:
            raise self._fail("update year increments", e) from e

    # ------------------------------------------------------------------
    # Makes / models / engine types
    # ------------------------------------------------------------------

    def make_ids(self) -> dict[str, int]:
        rows = self.session.execute(select(MakeTable.make_name, MakeTable.make_id))
        return {name: make_id for name, make_id in rows}

    def model_ids(self) -> dict[tuple[int, str], int]:
        rows = self.session.execute(
            select(ModelTable.make_id, ModelTable.model_name, ModelTable.model_id)
        )
        return {(make_id, name): model_id for make_id, name, model_id in rows}

    def engine_type_ids(self) -> dict[str, int]:
        rows = self.session.execute(
            select(EngineTypeTable.engine_type_name, EngineTypeTable.engine_type_id)
        )
        return {name: type_id for name, type_id in rows}

    def sync_makes(self, make_names: Iterable[str]) -> dict[str, int]:
        """
        Insert makes that are not catalogued yet.

        Returns:
            Every make name mapped to its id
        """
        names = [name for name in make_names if not is_absent(name)]
        try:
            inserted = insert_missing(
                self.session,
                MakeTable,
                [{"make_name": name} for name in names],
                ["make_name"],
            )
            if inserted:
                self.logger.info("Inserted new makes", count=inserted)
            return self.make_ids()
        except SQLAlchemyError as e:
            raise self._fail("synchronize makes", e) from e

    def sync_models(self, models: Iterable[tuple[int, str]]) -> dict[tuple[int, str], int]:
        """
        Insert (make_id, model_name) pairs that are not catalogued yet.

        The pair is the key: the same model name under two makes is two models.
        """
        pairs = [(make_id, name) for make_id, name in models if not is_absent(name)]
        try:
            inserted = insert_missing(
                self.session,
                ModelTable,
                [{"make_id": make_id, "model_name": name} for make_id, name in pairs],
                ["make_id", "model_name"],
            )
            if inserted:
                self.logger.info("Inserted new models", count=inserted)
            return self.model_ids()
        except SQLAlchemyError as e:
            raise self._fail("synchronize models", e) from e

    def sync_engine_types(self, type_names: Iterable[Optional[str]]) -> dict[str, int]:
        """Insert engine types that are not catalogued yet, skipping absent names"""
        names = [name for name in type_names if not is_absent(name)]
        try:
            inserted = insert_missing(
                self.session,
                EngineTypeTable,
                [{"engine_type_name": name} for name in names],
                ["engine_type_name"],
            )
            if inserted:
                self.logger.info("Inserted new engine types", count=inserted)
            return self.engine_type_ids()
        except SQLAlchemyError as e:
            raise self._fail("synchronize engine types", e) from e
