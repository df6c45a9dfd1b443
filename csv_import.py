"""Bulk listing ingestion from CSV files.

Every data row becomes one draft listing. Rows are processed in order and
independently: a bad row is reported and skipped, earlier rows stay.
"""

import csv
import io
import logging
import sqlite3
import time
from typing import Callable, Optional, Union

import config
import listings
from errors import PropertyFinderError, ValidationError
from models import ImportReport

logger = logging.getLogger(__name__)

# CSV column -> listing field
COLUMN_FIELDS = {
    "reference": "reference",
    "permit_number": "permit_number",
    "agent_name": "agent_name",
    "property_type": "property_type",
    "location_name": "location_name",
    "title_en": "title",
    "description_en": "description",
    "bathrooms": "bathrooms",
    "property_size": "size",
    "bedrooms": "bedrooms",
    "price": "price",
    "location_id": "location_id",
}

# CSV column -> extra_data key
EXTRA_COLUMNS = {
    "offering_type": "offering_type",
    "furnishing_type": "furnishing_type",
    "project_status": "project_status",
}


def parse_csv(content: Union[str, bytes]) -> tuple[list[str], list[list[str]]]:
    """Split CSV text into a header and data rows, dropping blank lines."""
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig")
    elif content.startswith("\ufeff"):
        content = content[1:]

    rows = [row for row in csv.reader(io.StringIO(content)) if any(cell.strip() for cell in row)]
    if not rows:
        raise ValidationError("CSV file is empty")
    header = [cell.strip() for cell in rows[0]]
    return header, rows[1:]


def missing_columns(header: list[str]) -> list[str]:
    present = {name.lower() for name in header}
    return [col for col in config.CSV_REQUIRED_COLUMNS if col.lower() not in present]


def row_to_fields(header: list[str], row: list[str]) -> dict:
    cells = {}
    for idx, name in enumerate(header):
        cells[name.lower()] = row[idx].strip() if idx < len(row) else ""

    fields = {field: cells.get(column, "") for column, field in COLUMN_FIELDS.items()}
    extra = {key: cells[column] for column, key in EXTRA_COLUMNS.items() if cells.get(column)}
    if cells.get("images"):
        extra["images"] = [url.strip() for url in cells["images"].split("|") if url.strip()]
    extra["source"] = "csv"
    fields["extra_data"] = extra
    return fields


def import_csv(content: Union[str, bytes], conn: Optional[sqlite3.Connection] = None,
               row_delay: float = 0.0,
               progress: Optional[Callable[[int, int], None]] = None) -> ImportReport:
    """Create one draft listing per CSV data row.

    The whole file is refused (ValidationError) if required columns are
    missing; otherwise each row succeeds or fails on its own.
    """
    header, rows = parse_csv(content)
    missing = missing_columns(header)
    if missing:
        raise ValidationError(f"Missing required columns: {', '.join(missing)}")

    report = ImportReport()
    total = len(rows)
    for index, row in enumerate(rows, start=1):
        fields = row_to_fields(header, row)
        if not fields["reference"]:
            fields["reference"] = f"REF-{int(time.time() * 1000)}-{index}"

        try:
            listing = listings.create_listing(fields, conn=conn, require_price=False)
            report.created.append(listing.id)
        except PropertyFinderError as e:
            logger.warning(f"CSV row {index} ({fields['reference']}) skipped: {e}")
            report.failures.append({"row": index, "reference": fields["reference"], "message": str(e)})

        report.processed += 1
        if progress:
            progress(report.processed, total)
        if row_delay and index < total:
            time.sleep(row_delay)

    logger.info(f"CSV import: {report.processed} rows, {report.created_count} created, "
                f"{len(report.failures)} failed")
    return report
