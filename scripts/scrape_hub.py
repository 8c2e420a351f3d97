#!/usr/bin/env python3
"""
Run one governed hub session end to end.

    python scripts/scrape_hub.py Riyadh bayt \
        --home https://www.bayt.com/en/saudi-arabia/ \
        --target https://www.bayt.com/en/saudi-arabia/jobs/ \
        --field title --field company
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from playwright.async_api import async_playwright

from scrape_governor.database import SessionLocal, init_db
from scrape_governor.errors import HubHaltError
from scrape_governor.services.browser import PlaywrightLauncher
from scrape_governor.services.hub_runner import HubScrapeJob, get_hub_runner
from scrape_governor.services.selector_store import get_selector_store
from scrape_governor.utils.logging_config import setup_logging


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Scrape one hub with the full governor stack.")
    parser.add_argument("hub", help="Hub id, e.g. Riyadh")
    parser.add_argument("source", help="Source id, e.g. bayt")
    parser.add_argument("--home", required=True, help="Home page visited first")
    parser.add_argument("--target", help="Page to extract from (defaults to --home)")
    parser.add_argument("--field", action="append", default=[], dest="fields", help="Field to extract; repeatable")
    parser.add_argument("--bot-request-id", help="Fingerprint requestId for the bot score check")
    parser.add_argument("--vision", action="store_true", help="Heal from a screenshot instead of the HTML")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()
    init_db()
    get_selector_store().ensure_source(args.source, region=args.hub)

    job = HubScrapeJob(
        hub_id=args.hub,
        source_id=args.source,
        home_url=args.home,
        target_url=args.target or args.home,
        fields=args.fields,
        bot_request_id=args.bot_request_id,
        use_vision=args.vision,
    )

    async with async_playwright() as p:
        launcher = PlaywrightLauncher(p, headless=False if args.headed else None)
        runner = get_hub_runner(launcher, SessionLocal)
        try:
            report = await runner.run_hub(job)
        except HubHaltError as e:
            print(f"Hub halted: {e}")
            return 2

    print(f"Scrape {report.status}: {args.hub} / {args.source}")
    for field_name, value in report.extracted.items():
        print(f"  {field_name}: {value!r}")
    if report.healed_fields:
        print(f"  healed: {', '.join(report.healed_fields)}")
    if report.rotated:
        print("  identity rotated after bot score check")
    return 0 if report.status == "ok" else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
