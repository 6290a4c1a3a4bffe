"""Write the ranked mailbox list and log the run summary."""

import csv
import logging
from pathlib import Path
from typing import Iterable, Union

from .models import AddressResult
from .ranker import Tally

logger = logging.getLogger(__name__)

DEFAULT_REPORT_PATH = "result/mailboxes.csv"

COLUMNS = [
    "name",
    "street",
    "city",
    "state",
    "zip",
    "price",
    "link",
    "rdi",
    "is_residential",
    "CMRA",
    "normalized_address",
]


def write_report(ranked: Iterable[AddressResult], path: Union[str, Path] = DEFAULT_REPORT_PATH) -> int:
    """Write one row per ranked address, in the given order. Returns the row count."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = 0
    with path.open("w", encoding="utf-8", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=COLUMNS)
        writer.writeheader()
        for r in ranked:
            a, o = r.address, r.outcome
            writer.writerow(
                {
                    "name": a.name,
                    "street": a.street,
                    "city": a.city,
                    "state": a.state,
                    "zip": a.full_zip(),
                    "price": a.price,
                    "link": a.link,
                    "rdi": o.rdi.value,
                    "is_residential": "true" if o.is_residential else "false",
                    "CMRA": "Y" if o.is_cmra else "N",
                    "normalized_address": o.normalized_address,
                }
            )
            rows += 1
    logger.info("saved %d records to [%s]", rows, path)
    return rows


def log_summary(t: Tally) -> None:
    logger.info(
        "processed %d/%d addresses: %d verified (%d residential, %d commercial, %d CMRA), %d rejected, %d failed",
        t.total - t.unprocessed, t.total, t.verified, t.residential, t.commercial, t.cmra,
        t.rejected, t.failed_total,
    )
    for cause, n in sorted(t.failed.items()):
        logger.info("  failed (%s): %d", cause, n)
    if t.duplicates:
        logger.info("duplicate catalog entries skipped: %d", t.duplicates)
    logger.info("exhausted credentials: %d", t.exhausted_credentials)
    if t.unprocessed:
        logger.warning(
            "%d addresses were not processed (%s); re-run with fresh credentials",
            t.unprocessed, t.stop_reason,
        )
