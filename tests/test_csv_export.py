"""CSV export tests."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from techflow.services.csv_export import CSV_HEADERS, contacts_to_csv, parse_contacts_csv


def _contact(**overrides):
    fields = {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "subject": "general",
        "message": "Hello there, how are you?",
        "status": "new",
        "created_at": datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_header_only_for_no_contacts():
    assert contacts_to_csv([]) == ",".join(CSV_HEADERS) + "\n"


def test_awkward_messages_survive_a_round_trip():
    messages = [
        "Commas, everywhere, really",
        'She said "hi" and left',
        "First line\nSecond line\n\nFourth line",
        'All of it: "quoted, multi\nline"',
    ]
    text = contacts_to_csv([_contact(message=m) for m in messages])
    rows = parse_contacts_csv(text)
    assert [row["Message"] for row in rows] == messages


def test_created_at_is_iso8601():
    rows = parse_contacts_csv(contacts_to_csv([_contact()]))
    assert rows[0]["Created At"] == "2024-03-01T12:30:00+00:00"
    assert rows[0]["Status"] == "new"


def test_formula_cells_are_neutralized():
    text = contacts_to_csv([_contact(name="=HYPERLINK(\"x\")", message="+1 555 0100 call me")])
    line = text.splitlines()[1]
    assert line.startswith("\"'=HYPERLINK")
    assert "'+1 555" in line

    rows = parse_contacts_csv(text)
    assert rows[0]["Name"] == '=HYPERLINK("x")'
    assert rows[0]["Message"] == "+1 555 0100 call me"


def test_plain_apostrophe_is_kept():
    rows = parse_contacts_csv(contacts_to_csv([_contact(message="'tis a fine day to write")]))
    assert rows[0]["Message"] == "'tis a fine day to write"


def test_unexpected_header_rejected():
    with pytest.raises(ValueError):
        parse_contacts_csv("name,email\nJane,jane@example.com\n")


@pytest.mark.parametrize(
    "value",
    [
        "'=SUM(A1:A3) is what I typed",
        "'+44 20 7946 0000",
        "''double",
        "'",
    ],
)
def test_leading_apostrophe_survives_a_round_trip(value):
    rows = parse_contacts_csv(contacts_to_csv([_contact(name=value, message=value)]))
    assert rows[0]["Name"] == value
    assert rows[0]["Message"] == value
