"""AI Agents package."""

from drivelog.agents.extraction_agent import (
    ExtractionFailedError,
    ExtractionResult,
    TripExtractionAgent,
)

__all__ = [
    "ExtractionFailedError",
    "ExtractionResult",
    "TripExtractionAgent",
]
