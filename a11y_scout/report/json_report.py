# a11y_scout/report/json_report.py

"""
JSON export of a scan summary.
"""
from pathlib import Path

from a11y_scout.aggregator import ScanSummary


def render_json(summary: ScanSummary, output_path: Path | str, *, pretty: bool = True) -> Path:
    """
    Write *summary* as JSON to *output_path* and return the path.

    Example:
    ```python
    from a11y_scout.report.json_report import render_json
    report_path = render_json(summary, 'reports/example.com.json')
    ```
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(summary.json(pretty=pretty), encoding="utf-8")
    return output
