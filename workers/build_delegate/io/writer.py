"""
Writer — serialize the invocation report to JSON.

Filesystem layout:
    <output_dir>/delegate_report.json
"""
import json
from pathlib import Path

from build_delegate.io.schema import InvocationReport

REPORT_FILENAME = "delegate_report.json"


def write_report(report: InvocationReport, output_dir: Path) -> Path:
    """
    Write *report* into *output_dir*.

    Creates *output_dir* if it does not exist.
    Returns the report path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    report_path = output_dir / REPORT_FILENAME
    report_path.write_text(
        json.dumps(
            report.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )
    return report_path
