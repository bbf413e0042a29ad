#!/usr/bin/env python3
"""
Herald Quickstart — run the relay pipeline in-process.

Replays samples/region_feed.jsonl through materializer → queue → sink and
prints what would be posted. Pass a webhook URL to post it for real.

Run with: python samples/quickstart.py [WEBHOOK_URL]

Requires: pip install -e .
"""

import asyncio
import sys
from pathlib import Path

from herald.cli.main import relay
from herald.sources.replay import ReplaySource

FEED = Path(__file__).with_name("region_feed.jsonl")


def main():
    webhook_url = sys.argv[1] if len(sys.argv) > 1 else ""

    print(f"Replaying {FEED.name}...\n")
    outcome = asyncio.run(relay(ReplaySource(FEED, interval=0.5), webhook_url=webhook_url))

    print(f"\nDone ({outcome.reason}).")
    print(f"  Echoed:    {outcome.sink.echoed}")
    print(f"  Delivered: {outcome.sink.delivered}")
    print(f"  Failed:    {outcome.sink.failed}")


if __name__ == "__main__":
    main()
