"""
VIN structure helpers.

A VIN is 17 characters: WMI (1-3), VDS (4-8), check digit (9), model-year
character (10) and serial section (11-17). Patterns use SQL LIKE syntax:
``_`` matches one character and ``%`` any remainder.
"""
import re
from typing import Optional

# Model-year characters in cycle order; A is 1980 (or 2010), 9 is 2009 (or 2039)
YEAR_DIGITS = "ABCDEFGHJKLMNPRSTVWXY123456789"
MODEL_YEAR_EPOCH = 1979
YEAR_CYCLE_LENGTH = 30

VIN_LENGTH = 17
PREFIX_LENGTH = 8

_VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")

_TRANSLITERATION = {
    **{str(d): d for d in range(10)},
    "A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "F": 6, "G": 7, "H": 8,
    "J": 1, "K": 2, "L": 3, "M": 4, "N": 5, "P": 7, "R": 9,
    "S": 2, "T": 3, "U": 4, "V": 5, "W": 6, "X": 7, "Y": 8, "Z": 9,
}
_WEIGHTS = (8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2)


def check_digit(vin: str) -> str:
    """ISO 3779 check digit for a 17-character VIN ('X' stands for 10)"""
    total = sum(_TRANSLITERATION[char] * weight for char, weight in zip(vin.upper(), _WEIGHTS))
    remainder = total % 11
    return "X" if remainder == 10 else str(remainder)


def is_valid_vin(vin: Optional[str], enforce_check_digit: bool = True) -> bool:
    """Structural VIN validation, optionally including the check digit"""
    if not vin:
        return False
    vin = vin.upper()
    if not _VIN_RE.match(vin):
        return False
    if vin[9] not in YEAR_DIGITS:
        return False
    if enforce_check_digit and vin[8] != check_digit(vin):
        return False
    return True


def year_cycle_for_prefix(prefix: str) -> int:
    """
    Which 30-year cycle a prefix's year characters belong to.

    A letter in VIN position 7 marks the 2010-2039 cycle.
    """
    return 0 if prefix[6].isdigit() else 1


def build_pattern(prefix: str, year_digit: str) -> str:
    """LIKE pattern for a prefix and model-year character"""
    return f"{prefix.upper()}_{year_digit.upper()}%"


def vin_pattern_for(vin: str) -> str:
    """The pattern a full VIN falls under"""
    return build_pattern(vin[:PREFIX_LENGTH], vin[9])


def vpic_query_for(pattern: str) -> str:
    """
    Translate a LIKE pattern into vPIC's partial VIN syntax.

    >>> vpic_query_for("1HGCM826_3%")
    '1HGCM826*3'
    """
    return pattern.rstrip("%").replace("_", "*")


def base_year(sequence: int) -> int:
    return MODEL_YEAR_EPOCH + sequence


def absolute_year(sequence: int, year_cycle: int, year_increment: int = 0) -> int:
    return base_year(sequence) + YEAR_CYCLE_LENGTH * year_cycle + year_increment


def year_digit_for(model_year: int) -> tuple[str, int]:
    """
    Model-year character and cycle for an absolute year.

    >>> year_digit_for(2003)
    ('3', 0)
    >>> year_digit_for(2010)
    ('A', 1)
    """
    offset = model_year - (MODEL_YEAR_EPOCH + 1)
    if offset < 0:
        raise ValueError(f"Model years before {MODEL_YEAR_EPOCH + 1} have no VIN year code")
    cycle, index = divmod(offset, YEAR_CYCLE_LENGTH)
    return YEAR_DIGITS[index], cycle
