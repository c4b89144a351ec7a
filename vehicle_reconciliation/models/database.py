"""
SQLAlchemy database models for the reconciliation schema.

Lookup tables carry an ``l_`` prefix, staging tables a ``t_`` prefix. Natural
keys are enforced with unique constraints so that insert-if-absent helpers can
rely on them.
"""
from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    UniqueConstraint,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# ============================================================================
# Inventory and software
# ============================================================================


class InventoryTable(Base):
    """Hardware inventory items, keyed by inventory number"""

    __tablename__ = "inventory"

    inventory_id = Column(Integer, primary_key=True, autoincrement=True)
    inventory_no = Column(String(255), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Inventory(id={self.inventory_id}, inventory_no='{self.inventory_no}')>"


class SoftwareTable(Base):
    """Manufacturer software numbers, each owned by one inventory item"""

    __tablename__ = "software"

    software_id = Column(Integer, primary_key=True, autoincrement=True)
    inventory_id = Column(
        Integer, ForeignKey("inventory.inventory_id"), nullable=False, index=True
    )
    mfr_software_no = Column(String(255), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Software(id={self.software_id}, mfr_software_no='{self.mfr_software_no}')>"


class HardwareInterchangeTable(Base):
    """Directed hardware/hardware interchange pairs"""

    __tablename__ = "hardware_interchange"

    inventory_id = Column(
        Integer, ForeignKey("inventory.inventory_id"), primary_key=True
    )
    related_inventory_id = Column(
        Integer, ForeignKey("inventory.inventory_id"), primary_key=True
    )


# ============================================================================
# Reference catalog
# ============================================================================


class WmiTable(Base):
    """World Manufacturer Identifiers (VIN characters 1-3)"""

    __tablename__ = "l_wmi"

    wmi_id = Column(Integer, primary_key=True, autoincrement=True)
    wmi_code = Column(String(3), nullable=False, unique=True)


class VdsTable(Base):
    """Vehicle Descriptor Sections (VIN characters 4-8) with year calibration"""

    __tablename__ = "l_vds"

    vds_id = Column(Integer, primary_key=True, autoincrement=True)
    wmi_id = Column(Integer, ForeignKey("l_wmi.wmi_id"), nullable=False)
    vds_code = Column(String(5), nullable=False)
    year_increment = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("wmi_id", "vds_code", name="uq_vds_wmi_code"),)


class YearDigitTable(Base):
    """Model-year characters (VIN character 10) and their 1..30 sequence"""

    __tablename__ = "l_year_digits"

    year_digit = Column(String(1), primary_key=True)
    sequence = Column(SmallInteger, nullable=False, unique=True)


class MakeTable(Base):
    __tablename__ = "l_makes"

    make_id = Column(Integer, primary_key=True, autoincrement=True)
    make_name = Column(String(255), nullable=False, unique=True)


class ModelTable(Base):
    __tablename__ = "l_models"

    model_id = Column(Integer, primary_key=True, autoincrement=True)
    make_id = Column(Integer, ForeignKey("l_makes.make_id"), nullable=False)
    model_name = Column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("make_id", "model_name", name="uq_model_make_name"),
    )


class EngineTypeTable(Base):
    __tablename__ = "l_engine_types"

    engine_type_id = Column(Integer, primary_key=True, autoincrement=True)
    engine_type_name = Column(String(255), nullable=False, unique=True)


# ============================================================================
# Vehicle identities
# ============================================================================


class VehicleIdentityTable(Base):
    """
    One vehicle family per VDS and model-year character.

    The absolute model year is never stored; it is recomputed from the year
    digit sequence, ``year_cycle`` and the VDS ``year_increment``. Identities
    created from specifications have no VDS.
    """

    __tablename__ = "vehicle_identities"

    vehicle_id = Column(Integer, primary_key=True, autoincrement=True)
    vds_id = Column(Integer, ForeignKey("l_vds.vds_id"), nullable=True)
    year_digit = Column(
        String(1), ForeignKey("l_year_digits.year_digit"), nullable=False
    )
    year_cycle = Column(SmallInteger, nullable=False, default=0)
    model_id = Column(Integer, ForeignKey("l_models.model_id"), nullable=True)
    engine_type_id = Column(
        Integer, ForeignKey("l_engine_types.engine_type_id"), nullable=True
    )
    engine_displacement = Column(Numeric(3, 1), nullable=True)
    vehicle_trim = Column(String(100), nullable=True)
    vehicle_series = Column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("vds_id", "year_digit", name="uq_identity_vds_year"),
        Index("idx_identity_model", "model_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<VehicleIdentity(id={self.vehicle_id}, vds_id={self.vds_id}, "
            f"year_digit='{self.year_digit}')>"
        )


class VehicleSoftwareMapTable(Base):
    __tablename__ = "vehicle_software_map"

    vehicle_id = Column(
        Integer, ForeignKey("vehicle_identities.vehicle_id"), primary_key=True
    )
    software_id = Column(Integer, ForeignKey("software.software_id"), primary_key=True)


# ============================================================================
# Staging
# ============================================================================


class HardwareSoftwareStagingTable(Base):
    """Raw hardware/software pairs for the current run"""

    __tablename__ = "t_hs"

    inventory_no = Column(String(255), primary_key=True)
    mfr_software_no = Column(String(255), primary_key=True)


class SoftwareVehicleStagingTable(Base):
    """
    Raw software/vehicle rows for the current run.

    ``record_type`` tags the row as a VIN record or a specification record;
    only the columns of that variant are filled.
    """

    __tablename__ = "t_sv"

    staging_id = Column(Integer, primary_key=True, autoincrement=True)
    record_type = Column(String(4), nullable=False)
    mfr_software_no = Column(String(255), nullable=False)
    vin = Column(String(17), nullable=True)
    make_name = Column(String(255), nullable=True)
    model_name = Column(String(255), nullable=True)
    model_year = Column(SmallInteger, nullable=True)
    engine_displacement = Column(Numeric(3, 1), nullable=True)
    engine_type = Column(String(255), nullable=True)
    vehicle_trim = Column(String(100), nullable=True)
    vehicle_series = Column(String(100), nullable=True)
    software_id = Column(Integer, nullable=True)
    vehicle_id = Column(Integer, nullable=True)


# ============================================================================
# Unmatched-record store (resumability checkpoint)
# ============================================================================


class UnmatchedVehicleTable(Base):
    """VIN patterns waiting for, or holding, an external decode"""

    __tablename__ = "unmatched_vehicles"

    unmatched_id = Column(Integer, primary_key=True, autoincrement=True)
    vin_pattern = Column(String(20), nullable=False, unique=True)
    vds_id = Column(Integer, ForeignKey("l_vds.vds_id"), nullable=False)
    year_digit = Column(String(1), nullable=False)
    expected_year = Column(SmallInteger, nullable=False)
    matched = Column(Boolean, nullable=False, default=False)
    attempted = Column(Boolean, nullable=False, default=False)

    # Decoded attributes, filled once matched
    make_name = Column(String(255), nullable=True)
    model_name = Column(String(255), nullable=True)
    model_year = Column(SmallInteger, nullable=True)
    engine_displacement = Column(Numeric(3, 1), nullable=True)
    engine_type_name = Column(String(255), nullable=True)
    vehicle_trim = Column(String(100), nullable=True)
    vehicle_series = Column(String(100), nullable=True)

    __table_args__ = (Index("idx_unmatched_state", "matched", "attempted"),)


class UnmatchedSoftwareTable(Base):
    """Software waiting for the vehicle behind a VIN pattern"""

    __tablename__ = "unmatched_software"

    vin_pattern = Column(String(20), primary_key=True)
    software_id = Column(Integer, ForeignKey("software.software_id"), primary_key=True)


def create_schema(engine: Engine) -> None:
    """Create every table that does not exist yet"""
    Base.metadata.create_all(engine)
