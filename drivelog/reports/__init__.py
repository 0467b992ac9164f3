"""Compliance report generation."""

from drivelog.reports.generator import ReportError, ReportGenerator

__all__ = ["ReportError", "ReportGenerator"]
