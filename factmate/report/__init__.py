"""Report rendering for FactMate."""

from .renderer import Report, ReportRow, format_report, render_report

__all__ = [
    "Report",
    "ReportRow",
    "format_report",
    "render_report",
]
