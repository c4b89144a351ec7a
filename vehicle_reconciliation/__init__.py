"""
Vehicle/Software Reconciliation System

Batch reconciliation of hardware, software and vehicle identity records with
resumable vPIC VIN decoding.
"""

__version__ = "1.0.0"
__description__ = "Resumable vehicle/software reconciliation with vPIC VIN decoding"

__all__ = [
    "__version__",
    "__description__",
]
