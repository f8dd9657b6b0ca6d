"""
Calibration record persistence and real-time synchronization service.
"""

__version__ = "1.0.0"
