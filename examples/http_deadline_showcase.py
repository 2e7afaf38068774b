#!/usr/bin/env python3
"""
Deadline Showcase - HTTP request with a best-effort deadline

This script wraps an aiohttp request in deadline(). The request is cancelled if it
has not completed within the deadline, and DeadlineExceededError is raised instead.

aiohttp already offers ClientTimeout; the point here is that deadline() works for any
cooperative coroutine, including ones composed of several requests.

Usage:
    python examples/http_deadline_showcase.py https://example.com 2s
"""

from __future__ import annotations

import asyncio
import logging
import sys

import aiohttp

from async_deadline import DeadlineExceededError, MonotonicClock, deadline, parse_duration

logger = logging.getLogger(__name__)


async def fetch_status(session: aiohttp.ClientSession, url: str) -> int:
    async with session.get(url) as response:
        await response.read()
        return response.status


async def main(url: str, budget: str) -> int:
    clock = MonotonicClock()
    until = clock.now() + parse_duration(budget)

    async with aiohttp.ClientSession() as session:
        try:
            status = await deadline(until, lambda: fetch_status(session, url), clock=clock)
        except DeadlineExceededError:
            logger.error(f"{url} did not answer within {budget}")
            return 1
        except aiohttp.ClientError as e:
            logger.error(f"Request to {url} failed: {e}")
            return 1

    logger.info(f"{url} answered with HTTP {status}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    target = sys.argv[1] if len(sys.argv) > 1 else "https://example.com"
    window = sys.argv[2] if len(sys.argv) > 2 else "2s"
    sys.exit(asyncio.run(main(target, window)))
