"""Read the mailbox location catalog (CSV)."""

import csv
from pathlib import Path
from typing import List, Union

from .models import Address, CatalogError

REQUIRED_COLUMNS = ("street", "city", "state", "zip")


def _split_zip(raw: str):
    raw = raw.strip()
    zip5, _, zip4 = raw.partition("-")
    return zip5.strip(), (zip4.strip() or None)


def read_catalog(path: Union[str, Path]) -> List[Address]:
    """Return catalog rows as Addresses, in file order."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8-sig", newline="") as fh:
            reader = csv.DictReader(fh)
            columns = [c.strip().lower() for c in (reader.fieldnames or [])]
            missing = [c for c in REQUIRED_COLUMNS if c not in columns]
            if missing:
                raise CatalogError(f"{path}: missing column(s): {', '.join(missing)}")

            addresses: List[Address] = []
            for row in reader:
                row = {(k or "").strip().lower(): (v or "").strip() for k, v in row.items()}
                if not any(row.values()):
                    continue
                zip5, zip4 = _split_zip(row["zip"])
                addresses.append(
                    Address(
                        street=row["street"],
                        city=row["city"],
                        state=row["state"],
                        zip=zip5,
                        zip4=row.get("zip4") or zip4,
                        name=row.get("name", ""),
                        link=row.get("link", ""),
                        price=row.get("price", ""),
                    )
                )
    except OSError as e:
        raise CatalogError(f"cannot read catalog {path}: {e}") from e
    except csv.Error as e:
        raise CatalogError(f"{path}: malformed CSV: {e}") from e
    return addresses
