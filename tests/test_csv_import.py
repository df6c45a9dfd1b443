import pytest

import db
import listings
from csv_import import import_csv, missing_columns, parse_csv
from errors import ValidationError

HEADER = "Reference,Permit_Number,Agent_Name,Property_Type,Location_Name,Title_EN,Description_EN,Bathrooms,Property_Size"


def _csv(*rows: str, header: str = HEADER) -> str:
    return "\n".join([header, *rows]) + "\n"


def test_three_rows_become_three_drafts() -> None:
    content = _csv(
        "GH-1,P-1,Sara Khan,AP,Dubai Marina,Marina flat,Sea view,2,1100",
        "GH-2,P-2,Sara Khan,VH,Arabian Ranches,Family villa,Garden,4,3200",
        "GH-3,P-3,Omar Ali,TH,JVC,Townhouse,Corner unit,3,2100",
    )
    report = import_csv(content)

    assert report.processed == 3
    assert report.created_count == 3
    assert report.failures == []
    stored = listings.get_all_listings()
    assert [l.reference for l in stored] == ["GH-1", "GH-2", "GH-3"]
    assert all(l.status == "draft" for l in stored)
    assert stored[0].size == "1100"
    assert stored[0].extra_data["source"] == "csv"


def test_missing_column_writes_nothing() -> None:
    header = HEADER.replace(",Property_Size", "")
    with pytest.raises(ValidationError, match="Property_Size"):
        import_csv(_csv("GH-1,P-1,Sara,AP,Marina,Flat,Desc,2", header=header))
    assert db.count_listings() == 0


def test_header_is_case_insensitive() -> None:
    report = import_csv(_csv("GH-1,P-1,Sara,AP,Marina,Flat,Desc,2,900", header=HEADER.lower()))
    assert report.created_count == 1


def test_blank_references_are_generated_and_unique() -> None:
    report = import_csv(_csv(
        ",P-1,Sara,AP,Marina,Flat one,Desc,2,900",
        ",P-2,Sara,AP,Marina,Flat two,Desc,2,950",
    ))
    refs = [l.reference for l in listings.get_all_listings()]
    assert report.created_count == 2
    assert len(set(refs)) == 2
    assert all(ref.startswith("REF-") for ref in refs)


def test_quoted_fields_keep_commas_and_newlines() -> None:
    report = import_csv(_csv('GH-1,P-1,Sara,AP,"Dubai Marina, Dubai","Flat, high floor","Line one\nLine two",2,900'))
    assert report.created_count == 1
    listing = listings.get_listing_by_reference("GH-1")
    assert listing.location_name == "Dubai Marina, Dubai"
    assert listing.title == "Flat, high floor"
    assert listing.description == "Line one\nLine two"


def test_bad_rows_are_reported_and_skipped() -> None:
    report = import_csv(_csv(
        "GH-1,P-1,Sara,AP,Marina,Flat,Desc,2,900",
        "GH-1,P-9,Sara,AP,Marina,Duplicate,Desc,2,900",
        "GH-2,,Sara,AP,Marina,No permit,Desc,2,900",
        "GH-3,P-3,Sara,AP,Marina,Fine,Desc,2,900",
    ))
    assert report.processed == 4
    assert report.created_count == 2
    assert [f["row"] for f in report.failures] == [2, 3]
    assert "already exists" in report.failures[0]["message"]


def test_optional_columns() -> None:
    header = HEADER + ",Bedrooms,Price,Location_ID,Offering_Type,Images"
    import_csv(_csv("GH-1,P-1,Sara,AP,Marina,Flat,Desc,2,900,0,95000,42,RR,https://a/1.jpg|https://a/2.jpg", header=header))
    listing = listings.get_listing_by_reference("GH-1")
    assert listing.bedrooms == "0"
    assert listing.price == "95000"
    assert listing.location_id == 42
    assert listing.extra_data["offering_type"] == "RR"
    assert listing.extra_data["images"] == ["https://a/1.jpg", "https://a/2.jpg"]


def test_bom_and_blank_lines() -> None:
    content = ("\ufeff" + _csv("GH-1,P-1,Sara,AP,Marina,Flat,Desc,2,900", "", "  ")).encode("utf-8")
    header, rows = parse_csv(content)
    assert header[0] == "Reference"
    assert len(rows) == 1


def test_empty_file() -> None:
    with pytest.raises(ValidationError):
        import_csv("")


def test_progress_callback() -> None:
    seen = []
    import_csv(_csv("GH-1,P-1,Sara,AP,Marina,Flat,Desc,2,900", "GH-2,P-2,Sara,AP,Marina,Flat,Desc,2,900"),
               progress=lambda done, total: seen.append((done, total)))
    assert seen == [(1, 2), (2, 2)]


def test_missing_columns_helper() -> None:
    assert missing_columns(HEADER.split(",")) == []
    assert missing_columns(["Reference"])[0] == "Permit_Number"
