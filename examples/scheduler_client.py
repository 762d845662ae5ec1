#!/usr/bin/env python3
"""
Scheduler Client Example

This example shows how an admin tool drives the beatfeed scheduler over HTTP:
check status, register a playlist, start a manual run, wait for it to finish
and page through the resulting history.

Usage:
    python examples/scheduler_client.py https://www.youtube.com/playlist?list=...

Requirements:
    - beatfeed server running (python run.py)
    - httpx package installed
"""

import asyncio
import sys

import httpx

# Configuration
BASE_URL = "http://localhost:8000"
TIMEOUT = 30  # seconds
POLL_INTERVAL = 2  # seconds


async def show_status(client: httpx.AsyncClient) -> dict:
    response = await client.get("/scheduler/status")
    response.raise_for_status()
    status = response.json()
    print(f"Active: {status['active']}  next run: {status['nextRun']}  interval: {status['interval']}")
    print(f"Sources: {len(status['sources'])}  running: {status['running']}")
    return status


async def ensure_source(client: httpx.AsyncClient, url: str) -> None:
    status = await show_status(client)
    if any(source["source"] == url for source in status["sources"]):
        print(f"Source already registered: {url}")
        return

    response = await client.post("/scheduler/sources", json={"source": url, "type": "playlist"})
    if response.status_code == 400:
        print(f"Rejected: {response.json()['detail']['error']}")
        sys.exit(1)
    response.raise_for_status()
    print(f"Added source {response.json()['source']['id']}")


async def run_and_wait(client: httpx.AsyncClient) -> None:
    response = await client.post("/scheduler/run")
    if response.status_code == 409:
        print("A run is already in progress, waiting for it instead")
    else:
        response.raise_for_status()
        print("Manual run started")

    while True:
        await asyncio.sleep(POLL_INTERVAL)
        status = (await client.get("/scheduler/status")).json()
        if not status["running"]:
            break
        print("   still running...")

    for log in status["logs"][-5:]:
        print(f"   [{log['type']}] {log['message']}")


async def show_history(client: httpx.AsyncClient) -> None:
    response = await client.get("/scheduler/history", params={"page": 1, "limit": 10})
    response.raise_for_status()
    history = response.json()
    print(f"History: {history['total']} records, {history['totalPages']} pages")
    for item in history["items"]:
        print(f"   {item['downloadedAt']}  {item['status']:<9}  {item['title']}")


async def main():
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    async with httpx.AsyncClient(base_url=BASE_URL, timeout=TIMEOUT) as client:
        await ensure_source(client, sys.argv[1])
        await run_and_wait(client)
        await show_history(client)


if __name__ == "__main__":
    asyncio.run(main())
