"""Tests for TripExtractionAgent with a fake Gemini model."""

import json

import pytest
from datetime import date

from drivelog.agents import ExtractionFailedError, TripExtractionAgent
from drivelog.models import SpecialOrigin
from tests.conftest import HOME, STUDIO


class FakeResponse:
    def __init__(self, text: str):
        self.text = text


class FakeModel:
    """Stands in for genai.GenerativeModel."""

    def __init__(self, text: str = "", error: Exception = None):
        self._text = text
        self._error = error
        self.prompts: list[str] = []

    async def generate_content_async(self, prompt: str):
        self.prompts.append(prompt)
        if self._error is not None:
            raise self._error
        return FakeResponse(self._text)


CALLSHEET = "DAY 1 - Mon 12.02.2024 - Call 07:00 - Studio Babelsberg, Potsdam"


class TestTripExtractionAgent:
    """Tests for extract()."""

    @pytest.mark.asyncio
    async def test_trips_are_round_trips_from_home(self):
        """Destinations are wrapped in the home address."""
        payload = {
            "trips": [
                {"date": "2024-02-12", "destinations": [STUDIO], "distance": 64.5, "reason": "Day 1"},
            ],
            "warnings": [],
        }
        model = FakeModel(json.dumps(payload))
        agent = TripExtractionAgent(model=model)

        result = await agent.extract(CALLSHEET, HOME, project_id="project-1")

        assert len(result.trips) == 1
        trip = result.trips[0]
        assert trip.date == date(2024, 2, 12)
        assert trip.locations == [HOME, STUDIO, HOME]
        assert trip.distance == 64.5
        assert trip.project_id == "project-1"
        assert trip.special_origin == SpecialOrigin.HOME
        assert result.warnings == []
        assert CALLSHEET in model.prompts[0]

    @pytest.mark.asyncio
    async def test_json_is_found_inside_prose(self):
        """Models like to wrap JSON in code fences."""
        text = 'Here you go:\n```json\n{"trips": [{"date": "2024-02-13", "destinations": ["Set"]}]}\n```'
        result = await TripExtractionAgent(model=FakeModel(text)).extract(CALLSHEET, HOME)

        assert len(result.trips) == 1
        assert result.trips[0].distance == 0
        assert result.raw_response == text

    @pytest.mark.asyncio
    async def test_bare_list_is_accepted(self):
        """Test a response that is just a list of trips."""
        text = '[{"date": "2024-02-13", "destinations": "Set"}]'
        result = await TripExtractionAgent(model=FakeModel(text)).extract(CALLSHEET, HOME)
        assert result.trips[0].locations == [HOME, "Set", HOME]

    @pytest.mark.asyncio
    async def test_unreadable_trips_become_warnings(self):
        """Bad items are skipped and reported, good ones kept."""
        payload = {
            "trips": [
                {"date": "not a date", "destinations": ["Set"]},
                "garbage",
                {"date": "2024-02-14", "destinations": ["Set"], "distance": 12},
            ],
            "warnings": ["Day 3 location illegible"],
        }
        result = await TripExtractionAgent(model=FakeModel(json.dumps(payload))).extract(CALLSHEET, HOME)

        assert [t.date for t in result.trips] == [date(2024, 2, 14)]
        assert result.warnings[0] == "Day 3 location illegible"
        assert len(result.warnings) == 3

    @pytest.mark.asyncio
    async def test_unparseable_response(self):
        """Test that no JSON means no trips and a warning."""
        result = await TripExtractionAgent(model=FakeModel("I cannot help with that.")).extract(CALLSHEET, HOME)
        assert result.trips == []
        assert result.warnings == ["Could not read any trips from the callsheet"]

    @pytest.mark.asyncio
    async def test_empty_callsheet_skips_model(self):
        """Test that empty input never reaches the model."""
        model = FakeModel("{}")
        result = await TripExtractionAgent(model=model).extract("   ", HOME)
        assert result.trips == []
        assert model.prompts == []

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        """Test ExtractionFailedError when the model call fails."""
        agent = TripExtractionAgent(model=FakeModel(error=ConnectionError("timeout")))
        with pytest.raises(ExtractionFailedError):
            await agent.extract(CALLSHEET, HOME)
