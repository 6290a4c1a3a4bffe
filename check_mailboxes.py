#!/usr/bin/env python3
"""
check_mailboxes.py — find mailbox locations that are not CMRAs

Features
- Verifies every catalog address with the Smarty US Street API
- Spreads lookups over several Smarty accounts (free accounts get 1000/month)
- Retries transient failures with backoff, moves quota failures to another account
- Keeps non-CMRA addresses, residential first, and writes them to CSV
- Partial runs still write a report plus a summary of what was skipped

Environment (.env)
  CREDENTIALS=ID1=TOKEN1,ID2=TOKEN2
  (see mailcheck/config.py for the tuning knobs)

Usage
  python check_mailboxes.py CATALOG.csv [--out result/mailboxes.csv]
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import click

from mailcheck.catalog import read_catalog
from mailcheck.config import Settings
from mailcheck.dispatcher import Dispatcher
from mailcheck.models import MailcheckError
from mailcheck.pool import SELECTION_POLICIES, CredentialPool
from mailcheck.ranker import Tally, rank, tally
from mailcheck.report import DEFAULT_REPORT_PATH, log_summary, write_report
from mailcheck.smarty import SmartyClient

logger = logging.getLogger("check_mailboxes")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2


def print_summary(t: Tally, rows: int, out: str) -> None:
    print("\n================ Mailbox Check =================")
    print(f"📬 Addresses:       {t.total}")
    print(f"✅ Verified:        {t.verified}")
    print(f"🏠 Residential:     {t.residential}")
    print(f"🏢 Commercial:      {t.commercial}")
    print(f"🚫 CMRA:            {t.cmra}")
    print(f"❌ Rejected:        {t.rejected}")
    print(f"⚠️  Failed:          {t.failed_total}")
    for cause, n in sorted(t.failed.items()):
        print(f"   {cause}: {n}")
    if t.duplicates:
        print(f"♻️  Duplicates:      {t.duplicates}")
    print(f"🔑 Exhausted keys:  {t.exhausted_credentials}")
    print("================================================")
    print(f"💾 Report:          {out} ({rows} rows)")
    if t.unprocessed:
        print(f"⏸  Not processed:   {t.unprocessed} ({t.stop_reason})")
        print("💡 Re-run with fresh credentials to cover the rest.")
    print("================================================\n")


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("catalog", type=click.Path(exists=True, dir_okay=False))
@click.option("--out", default=DEFAULT_REPORT_PATH, show_default=True, help="Report CSV path.")
@click.option("--concurrency", type=int, help="Parallel lookups (overrides MAILCHECK_CONCURRENCY).")
@click.option("--max-attempts", type=int, help="Attempts per address on transient errors.")
@click.option(
    "--selection",
    type=click.Choice(SELECTION_POLICIES),
    help="How to pick the next credential (overrides MAILCHECK_SELECTION).",
)
@click.option("--log-level", help="Logging level (overrides LOG_LEVEL).")
def main(
    catalog: str,
    out: str,
    concurrency: Optional[int],
    max_attempts: Optional[int],
    selection: Optional[str],
    log_level: Optional[str],
) -> None:
    try:
        settings = Settings.from_env()
        if concurrency is not None:
            settings.concurrency = concurrency
        if max_attempts is not None:
            settings.max_attempts = max_attempts
        if selection is not None:
            settings.selection = selection
        if log_level is not None:
            settings.log_level = log_level.upper()
        settings.validate()
    except MailcheckError as e:
        print(f"\n❌ Error: {e}")
        sys.exit(EXIT_ERROR)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        addresses = read_catalog(catalog)
    except MailcheckError as e:
        logger.error("%s", e)
        print(f"\n❌ Error: {e}")
        sys.exit(EXIT_ERROR)
    logger.info("loaded [%d] mailboxes from [%s]", len(addresses), catalog)

    pool = CredentialPool(settings.credentials, policy=settings.selection)
    client = SmartyClient(base_url=settings.base_url, timeout=settings.timeout)
    dispatcher = Dispatcher(
        pool,
        client,
        concurrency=settings.concurrency,
        max_attempts=settings.max_attempts,
        max_quota_retries=settings.max_quota_retries,
        backoff_base=settings.backoff_base,
        backoff_max=settings.backoff_max,
        error_budget=settings.error_budget,
    )

    result = dispatcher.run(addresses)
    ranked = rank(result.results)
    rows = write_report(ranked, out)

    t = tally(result)
    log_summary(t)
    print_summary(t, rows, out)
    sys.exit(EXIT_OK if result.complete else EXIT_PARTIAL)


if __name__ == "__main__":
    main()
