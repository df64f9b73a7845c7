"""
Export of an operation's per-item results as a downloadable file.
"""

import csv
import io
import json
from dataclasses import dataclass

from .errors import UnsupportedExportFormatError
from .operation import OperationRecord

CSV_HEADERS = ["recordIndex", "status", "processedAt", "error"]

MEDIA_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
}


@dataclass
class ExportedResults:
    content: str
    media_type: str
    filename: str


def results_to_json(record: OperationRecord) -> str:
    """Summary counters plus every result entry"""
    payload = {
        "operation_id": record.id,
        "operation_type": record.operation_type.value,
        "status": record.status.value,
        "total_records": record.total_records,
        "successful_records": record.successful_records,
        "failed_records": record.failed_records,
        "start_time": record.start_time.isoformat() if record.start_time else None,
        "end_time": record.end_time.isoformat() if record.end_time else None,
        "results": [r.to_dict() for r in record.results],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)


def results_to_csv(record: OperationRecord) -> str:
    """One row per result; an operation without results exports the header only."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for result in record.results:
        writer.writerow([
            result.record_index,
            result.status.value,
            result.processed_at.isoformat(),
            result.error or "",
        ])
    return buffer.getvalue()


def export_results(record: OperationRecord, fmt: str = "json") -> ExportedResults:
    """
    Render the record's results.

    Raises:
        UnsupportedExportFormatError: fmt is not json or csv
    """
    fmt = (fmt or "json").lower()
    if fmt == "json":
        content = results_to_json(record)
    elif fmt == "csv":
        content = results_to_csv(record)
    else:
        raise UnsupportedExportFormatError(fmt)

    return ExportedResults(
        content=content,
        media_type=MEDIA_TYPES[fmt],
        filename=f"{record.id}_results.{fmt}",
    )
