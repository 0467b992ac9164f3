"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking
- Required field presence (date, at least two locations, distance)
- Format validation
- This catches extraction errors and malformed imports

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Implausible distance detection
- Round trips that don't return home
- Passenger count limits
- Missing trip purpose
- This catches logically impossible or suspicious trips

Stage 2 only runs if stage 1 produced a usable draft.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; warnings travel with the trip in its `warnings` list.
"""

from datetime import date, timedelta
from typing import Callable, Optional, Union

from pydantic import ValidationError

from drivelog.config import AppSettings, get_settings
from drivelog.models.trip import SpecialOrigin, TripDraft
from drivelog.models.validation import TripValidationResult, ValidationIssue


class TripValidator:
    """
    Validates trip drafts through a two-stage pipeline.

    Stage 1: Schema validation (pydantic model construction)
    Stage 2: Semantic validation (plausibility rules from AppSettings)
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize validator.

        Args:
            settings: Thresholds to validate against. Defaults to app settings.
            today: Returns the current date (injectable for tests)
        """
        self._settings = settings or get_settings().app
        self._today = today or date.today

    def _validate_schema(
        self,
        data: Union[TripDraft, dict],
    ) -> tuple[Optional[TripDraft], list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (draft_or_none, list_of_issues)
        """
        if isinstance(data, TripDraft):
            return data, []

        try:
            return TripDraft.model_validate(data), []
        except ValidationError as e:
            issues = []
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "trip"
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="missing" if error["type"] == "missing" else "invalid_value",
                    message=f"{field}: {error['msg']}",
                    severity="error",
                ))
            return None, issues

    def _validate_semantic(self, draft: TripDraft) -> list[ValidationIssue]:
        """
        Stage 2: Semantic validation.

        Returns: list_of_issues
        """
        issues = []
        today = self._today()

        # Future date check (with tolerance)
        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        if draft.date > max_future_date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Trip date ({draft.date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        # Distance plausibility
        if draft.distance > self._settings.max_trip_distance_km:
            issues.append(ValidationIssue(
                field="distance",
                issue_type="suspicious_value",
                message=(
                    f"Distance ({draft.distance:g} km) is above "
                    f"{self._settings.max_trip_distance_km:g} km"
                ),
                severity="warning",
                suggested_fix="Please verify the distance",
            ))
        elif draft.distance == 0:
            issues.append(ValidationIssue(
                field="distance",
                issue_type="suspicious_value",
                message="Distance is zero",
                severity="warning",
                suggested_fix="Enter the distance driven",
            ))

        # A trip from home is a round trip
        if (
            draft.special_origin == SpecialOrigin.HOME
            and draft.locations[0].casefold() != draft.locations[-1].casefold()
        ):
            issues.append(ValidationIssue(
                field="locations",
                issue_type="inconsistent",
                message="Trip starts at home but does not return to its origin",
                severity="warning",
                suggested_fix="Add the return leg or mark the trip as a continuation",
            ))

        if draft.passengers is not None and draft.passengers > self._settings.max_passengers:
            issues.append(ValidationIssue(
                field="passengers",
                issue_type="invalid_value",
                message=(
                    f"Passenger count ({draft.passengers}) exceeds the limit of "
                    f"{self._settings.max_passengers}"
                ),
                severity="error",
                suggested_fix="Please correct the number of passengers",
            ))

        if not draft.reason:
            issues.append(ValidationIssue(
                field="reason",
                issue_type="missing",
                message="Trip has no reason",
                severity="warning",
                suggested_fix="Describe the purpose of the trip",
            ))

        return issues

    def validate(self, data: Union[TripDraft, dict]) -> TripValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            data: A draft, or raw trip data in snake_case or camelCase

        Returns:
            TripValidationResult with all issues found. The returned draft
            carries every stage 2 warning message.
        """
        draft, all_issues = self._validate_schema(data)
        schema_valid = draft is not None

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if draft is not None:
            semantic_issues = self._validate_semantic(draft)
            all_issues.extend(semantic_issues)
            semantic_valid = not any(issue.severity == "error" for issue in semantic_issues)

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]
        if draft is not None and warnings:
            draft = draft.model_copy(update={
                "warnings": list(dict.fromkeys([*draft.warnings, *warnings])),
            })

        return TripValidationResult(
            draft=draft,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(self, result: TripValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to non-technical users.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed!"

        lines = []

        if result.errors:
            lines.append("❌ This trip can't be saved yet:")
            for issue in result.errors:
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
