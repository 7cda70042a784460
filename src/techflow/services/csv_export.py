"""CSV export of contacts.

Learn: Plain stdlib csv with standard quoting, so messages containing
commas, quotes, or newlines survive a round-trip. Cells that a spreadsheet
would evaluate as a formula get a leading apostrophe; parse_contacts_csv
strips it again.
"""

import csv
import io
from datetime import datetime
from typing import Any, Iterable

CSV_HEADERS = ("Name", "Email", "Subject", "Message", "Status", "Created At")
CSV_DANGEROUS_PREFIXES = ("=", "+", "-", "@")


def _csv_safe(value: str) -> str:
    # A leading apostrophe is escaped too, so exactly one is stripped on parse.
    if value and value.startswith(CSV_DANGEROUS_PREFIXES + ("'",)):
        return f"'{value}"
    return value


def _csv_unsafe(value: str) -> str:
    if value.startswith("'"):
        return value[1:]
    return value


def _serialize_csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def contacts_to_csv(contacts: Iterable[Any]) -> str:
    """Render contacts (already ordered newest first) as a CSV document."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for contact in contacts:
        row = (
            contact.name,
            contact.email,
            contact.subject,
            contact.message,
            contact.status,
            contact.created_at,
        )
        writer.writerow([_csv_safe(_serialize_csv_value(value)) for value in row])
    return output.getvalue()


def parse_contacts_csv(text: str) -> list[dict[str, str]]:
    """Read an exported CSV back into dicts keyed by the export headers."""
    reader = csv.DictReader(io.StringIO(text, newline=""))
    if tuple(reader.fieldnames or ()) != CSV_HEADERS:
        raise ValueError(f"Unexpected CSV header: {reader.fieldnames}")
    return [
        {key: _csv_unsafe(value or "") for key, value in row.items()}
        for row in reader
    ]
