import csv

import pytest

from helpers import commercial, make_address, residential
from mailcheck.catalog import read_catalog
from mailcheck.models import AddressResult, CatalogError
from mailcheck.report import COLUMNS, write_report


def test_read_catalog_keeps_order_and_splits_zip(tmp_path):
    path = tmp_path / "catalog.csv"
    path.write_text(
        "name,street,city,state,zip,price,link\n"
        "Downtown,1 Main St Ste 100,Austin,TX,78701-1234,9.99,https://example.com/a\n"
        ",,,,,,\n"
        "Uptown,2 Oak Ave,Dallas,TX,75201,14.99,https://example.com/b\n",
        encoding="utf-8",
    )

    addresses = read_catalog(path)

    assert [a.name for a in addresses] == ["Downtown", "Uptown"]
    assert (addresses[0].zip, addresses[0].zip4) == ("78701", "1234")
    assert addresses[1].zip4 is None
    assert addresses[1].price == "14.99"


def test_read_catalog_requires_address_columns(tmp_path):
    path = tmp_path / "catalog.csv"
    path.write_text("name,street,city\nX,1 Main St,Austin\n", encoding="utf-8")

    with pytest.raises(CatalogError, match="state"):
        read_catalog(path)


def test_missing_catalog_file_is_catalog_error(tmp_path):
    with pytest.raises(CatalogError):
        read_catalog(tmp_path / "nope.csv")


def test_write_report_rows_follow_given_order(tmp_path):
    a = make_address(0, zip4="0001")
    b = make_address(1)
    ranked = [
        AddressResult(index=1, address=b, outcome=residential(b)),
        AddressResult(index=0, address=a, outcome=commercial(a)),
    ]
    out = tmp_path / "result" / "mailboxes.csv"

    rows = write_report(ranked, out)

    assert rows == 2
    with out.open(encoding="utf-8", newline="") as fh:
        reader = csv.DictReader(fh)
        assert reader.fieldnames == COLUMNS
        records = list(reader)
    assert [r["name"] for r in records] == ["Location 1", "Location 0"]
    assert records[0]["is_residential"] == "true"
    assert records[0]["rdi"] == "Residential"
    assert records[1]["zip"] == "53703-0001"
    assert records[1]["CMRA"] == "N"
