"""CSV rendering for activity exports."""

import csv
from datetime import date
from io import StringIO

from harmony.services.archive_service import ExportResult

CSV_MEDIA_TYPE = "text/csv"


def render_csv(export: ExportResult) -> str:
    """Header row followed by the export rows."""
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(export.columns)
    writer.writerows(export.rows)
    return buffer.getvalue()


def export_filename(scope: str, today: date) -> str:
    return f"activities_{scope.lower()}_{today.isoformat()}.csv"


def export_headers(export: ExportResult, today: date) -> dict[str, str]:
    """Download headers; X-Export-Shape tells clients which columns to expect."""
    return {
        "Content-Disposition": f'attachment; filename="{export_filename(export.scope, today)}"',
        "X-Export-Shape": export.shape,
    }
