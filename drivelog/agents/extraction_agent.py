"""
Callsheet Extraction Agent

DESIGN DECISION: The LLM reads a callsheet and PROPOSES trips. It never
writes to the ledger. Proposed trips go through validation and then
`TripManager.add_ai_trips`, which records them with source AI_AGENT.

CRITICAL BOUNDARIES:
   - CAN: Find shooting days and locations in callsheet text
   - CANNOT: Persist trips
   - CANNOT: Invent distances (missing distances stay 0 and are flagged)
   - MUST: Report what it couldn't read as warnings

The LLM is a TRANSLATOR, not an ORACLE.
"""

import json
from datetime import date
from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field, ValidationError

from drivelog.config import get_settings
from drivelog.models.trip import SpecialOrigin, TripDraft


logger = structlog.get_logger(__name__)


class ExtractionResult(BaseModel):
    """Trips proposed from one callsheet."""

    trips: list[TripDraft] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    raw_response: str = Field(
        default="",
        description="Unparsed model output, kept for debugging"
    )


class ExtractionFailedError(Exception):
    """The model could not be reached or returned no response."""
    pass


class TripExtractionAgent:
    """
    AI agent that turns callsheet text into trip drafts.

    BOUNDARIES:
    - NEVER persists data
    - Every trip leaves from and returns to the given home address
    - ALWAYS defers to the user for confirmation
    """

    def __init__(self, model: Optional[Any] = None):
        """
        Args:
            model: Object with an async `generate_content_async(prompt)`.
                   Defaults to the configured Gemini model.
        """
        if model is None:
            model = self._configure_genai()
        self._model = model

    @staticmethod
    def _configure_genai():
        """Configure Google Generative AI."""
        settings = get_settings().gemini
        genai.configure(api_key=settings.api_key)
        return genai.GenerativeModel(
            model_name=settings.model_name,
            generation_config={
                "temperature": settings.temperature,
                "max_output_tokens": settings.max_tokens,
            }
        )

    def _build_prompt(self, callsheet_text: str) -> str:
        return f"""You are reading a film production callsheet for a driving log app.

Find every day on which the crew member has to travel to a set or location.

Callsheet:
{callsheet_text}

Respond with ONLY a JSON object in this exact format:
{{"trips": [{{"date": "YYYY-MM-DD", "destinations": ["full address"], "distance": 0, "reason": "short purpose"}}], "warnings": ["anything you could not read"]}}

Important:
- "destinations" are the places visited in order, WITHOUT the home address
- Use distance 0 if the callsheet does not state it. Never estimate.
- Do not invent dates or addresses. Add a warning instead."""

    @staticmethod
    def _find_json(text: str) -> Optional[Any]:
        """Find the outermost JSON object or array in model output."""
        candidates = sorted(
            (text.find(opener), opener, closer)
            for opener, closer in (("{", "}"), ("[", "]"))
            if text.find(opener) >= 0
        )
        for start, _, closer in candidates:
            end = text.rfind(closer) + 1
            if end > start:
                try:
                    return json.loads(text[start:end])
                except json.JSONDecodeError:
                    continue
        return None

    def _to_draft(
        self,
        item: dict,
        home_address: str,
        project_id: str,
    ) -> TripDraft:
        destinations = item.get("destinations") or item.get("locations") or []
        if isinstance(destinations, str):
            destinations = [destinations]

        return TripDraft(
            date=date.fromisoformat(str(item.get("date", ""))),
            locations=[home_address, *destinations, home_address],
            distance=float(item.get("distance") or 0),
            project_id=project_id,
            reason=str(item.get("reason") or ""),
            special_origin=SpecialOrigin.HOME,
        )

    async def extract(
        self,
        callsheet_text: str,
        home_address: str,
        project_id: str = "",
    ) -> ExtractionResult:
        """
        Propose trips for a callsheet.

        Args:
            callsheet_text: Plain text of the callsheet
            home_address: Where every trip starts and ends
            project_id: Project the trips belong to

        Returns:
            ExtractionResult. An unusable response yields no trips and a
            warning, not an exception.

        Raises:
            ExtractionFailedError: If the model call itself fails
        """
        if not callsheet_text or not callsheet_text.strip():
            return ExtractionResult(warnings=["Callsheet is empty"])

        try:
            response = await self._model.generate_content_async(
                self._build_prompt(callsheet_text)
            )
            text = (response.text or "").strip()
        except Exception as e:
            raise ExtractionFailedError(f"Trip extraction failed: {e}")

        data = self._find_json(text)
        if isinstance(data, list):
            data = {"trips": data}
        if not isinstance(data, dict):
            logger.warning("extraction_unparseable", response_length=len(text))
            return ExtractionResult(
                warnings=["Could not read any trips from the callsheet"],
                raw_response=text,
            )

        warnings = [str(w) for w in data.get("warnings") or [] if w]
        trips = []
        for index, item in enumerate(data.get("trips") or []):
            if not isinstance(item, dict):
                warnings.append(f"Trip {index + 1} is not an object and was skipped")
                continue
            try:
                trips.append(self._to_draft(item, home_address, project_id))
            except (ValueError, TypeError, ValidationError) as e:
                warnings.append(f"Trip {index + 1} could not be read and was skipped: {e}")

        if not trips and not warnings:
            warnings.append("No trips found in the callsheet")

        logger.info("extraction_completed", trip_count=len(trips), warning_count=len(warnings))
        return ExtractionResult(trips=trips, warnings=warnings, raw_response=text)
