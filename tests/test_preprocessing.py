"""
test_preprocessing.py — Column mapping, filenames and partition keys
"""

import pandas as pd
import pytest

from districtdesk.errors import ValidationFailed
from districtdesk.preprocessing import (
    build_column_mapping,
    extract_rows,
    parse_address,
    parse_upload_filename,
    read_spreadsheet,
    sanitize_partition_key,
)


# ── Column mapping ────────────────────────────────────────────────────────────
def test_mapping_matches_headers_case_insensitively():
    mapping = build_column_mapping(["Sr No", "Consumer NAME", "Mobile No", "Full Address"])
    assert mapping == {"name": "Consumer NAME", "mobileNumber": "Mobile No", "address": "Full Address"}


def test_first_matching_header_wins():
    mapping = build_column_mapping(["Phone", "Name", "Father Name", "Mobile"])
    assert mapping["name"] == "Name"
    assert mapping["mobileNumber"] == "Phone"


def test_one_header_can_fill_several_fields():
    mapping = build_column_mapping(["Contact Name", "Address"])
    assert mapping["name"] == "Contact Name"
    assert mapping["mobileNumber"] == "Contact Name"


def test_missing_columns_yield_empty_fields():
    df = pd.DataFrame([{"Name": " Asha ", "Ward": "4"}])
    rows = extract_rows(df, build_column_mapping(list(df.columns)))
    assert rows == [{"name": "Asha", "mobileNumber": "", "address": ""}]


def test_extract_rows_skips_blank_rows_and_trims():
    df = pd.DataFrame([
        {"Name": "Asha Patil", "Mobile": " 9876543210 ", "Address": "Kothrud, Pune"},
        {"Name": "", "Mobile": "  ", "Address": ""},
        {"Name": "", "Mobile": "", "Address": "Aundh, Pune"},
    ])
    rows = extract_rows(df, build_column_mapping(list(df.columns)))
    assert len(rows) == 2
    assert rows[0]["mobileNumber"] == "9876543210"
    assert rows[1] == {"name": "", "mobileNumber": "", "address": "Aundh, Pune"}


# ── Spreadsheet reading ───────────────────────────────────────────────────────
def test_read_spreadsheet_keeps_cells_as_text():
    content = b"Name,Mobile\nAsha,09876543210\n"
    df = read_spreadsheet(content, "Pune-Kothrud.csv")
    assert df.loc[0, "Mobile"] == "09876543210"


def test_read_spreadsheet_xlsx(spreadsheet):
    content = spreadsheet([{"Name": "Asha", "Mobile": "9876543210", "Address": "Kothrud, Pune"}])
    df = read_spreadsheet(content, "Pune-Kothrud.xlsx")
    assert list(df.columns) == ["Name", "Mobile", "Address"]
    assert df.loc[0, "Name"] == "Asha"


def test_read_spreadsheet_rejects_other_formats():
    with pytest.raises(ValidationFailed):
        read_spreadsheet(b"{}", "Pune-Kothrud.json")


@pytest.mark.parametrize("filename", ["Pune-Kothrud.xlsx", "Pune-Kothrud.xls"])
def test_read_spreadsheet_rejects_corrupt_workbook(filename):
    with pytest.raises(ValidationFailed, match="Could not read"):
        read_spreadsheet(b"not a workbook", filename)


# ── Filenames ─────────────────────────────────────────────────────────────────
@pytest.mark.parametrize("filename, expected", [
    ("Pune-Kothrud.xlsx", ("Pune", "Kothrud")),
    ("Pune_Kothrud.csv", ("Pune", "Kothrud")),
    ("Pune Kothrud.xls", ("Pune", "Kothrud")),
    ("Pune-Pimpri-Chinchwad.xlsx", ("Pune", "Pimpri-Chinchwad")),
    ("Pune_Koregaon Park.XLSX", ("Pune", "Koregaon Park")),
])
def test_parse_upload_filename(filename, expected):
    assert parse_upload_filename(filename) == expected


@pytest.mark.parametrize("filename", ["Pune.xlsx", "-Kothrud.xlsx", "Pune-.xlsx", ".xlsx"])
def test_parse_upload_filename_rejects_malformed_names(filename):
    with pytest.raises(ValidationFailed):
        parse_upload_filename(filename)


# ── Partition keys ────────────────────────────────────────────────────────────
def test_sanitize_partition_key():
    assert sanitize_partition_key(" Ward 4/5.B\\C ") == "Ward 4_5_B_C"
    assert sanitize_partition_key("   ") == "UNKNOWN"
    assert sanitize_partition_key(None) == "UNKNOWN"
    assert sanitize_partition_key("Kothrud") == "Kothrud"


def test_parse_address():
    assert parse_address("Kothrud, Pune, Maharashtra, 411038") == ("Pune", "Kothrud")
    assert parse_address("Kothrud") == ("", "Kothrud")
    assert parse_address("") == ("", "")
