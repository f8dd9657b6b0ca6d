"""
SQLAlchemy model for calibration records
"""

from sqlalchemy import CheckConstraint, Column, DateTime, Float, Index, Integer, String, Text

from ..database.core import Base


class CalibrationRecord(Base):
    """
    One pass/fail calibration result for a dispensing machine.

    Rows are immutable once inserted: only create and delete exist.
    Timestamps are stored as naive UTC.
    """
    __tablename__ = "records"
    __table_args__ = (
        CheckConstraint("status IN ('pass', 'fail')", name="ck_records_status"),
        Index("ix_records_date_id", "date", "id"),
        # AUTOINCREMENT keeps ids from being reused after the newest row is deleted
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    machine = Column(
        String(64),
        nullable=False,
        index=True,
        doc="Machine registry key"
    )
    volume = Column(
        Float,
        nullable=False,
        doc="Nominal volume copied from the registry at insert time"
    )
    date = Column(
        DateTime,
        nullable=False,
        doc="When the calibration took place (UTC)"
    )
    status = Column(String(8), nullable=False)
    image_ref = Column(
        String(255),
        nullable=True,
        doc="Blob store key of the attached photo"
    )
    timestamp = Column(
        DateTime,
        nullable=False,
        doc="Insertion time (UTC)"
    )
    calibrator = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f"<CalibrationRecord(id={self.id}, machine='{self.machine}', status='{self.status}')>"
