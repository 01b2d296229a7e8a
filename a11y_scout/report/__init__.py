"""a11y_scout.report: exports of scan summaries used by the CLI."""

from .json_report import render_json

__all__ = ["render_json"]
