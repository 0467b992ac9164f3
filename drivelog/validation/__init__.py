"""Trip validation package."""

from drivelog.validation.validator import TripValidator

__all__ = ["TripValidator"]
