"""
SQLAlchemy models for the calibration record service
"""

from .record import CalibrationRecord

__all__ = [
    "CalibrationRecord",
]
