#!/usr/bin/env python3
"""
Firemarket live notifications — watch pushes arrive over the WebSocket.

A supplier connects to /ws and authenticates, then a customer posts an
ad and accepts the supplier's bid; the supplier's socket prints every
frame as it arrives.
Run with: python examples/live_notifications.py

Requires: pip install -e . websockets
Backend must be running: http://localhost:8000
"""

import asyncio
import json
import uuid

import websockets

from _common import check_backend, client_for, expect
from firemarket.auth.jwt import create_access_token

WS_URL = "ws://localhost:8000/ws"


async def listen(supplier_id: uuid.UUID, ready: asyncio.Event, done: asyncio.Event):
    async with websockets.connect(WS_URL) as ws:
        print(f"← {json.loads(await ws.recv())['type']}")
        await ws.send(json.dumps({"type": "auth", "token": create_access_token(str(supplier_id))}))
        print(f"← {json.loads(await ws.recv())['type']}")
        ready.set()

        while not done.is_set():
            try:
                frame = json.loads(await asyncio.wait_for(ws.recv(), timeout=2))
            except asyncio.TimeoutError:
                continue
            print(f"← {frame['type']}: {frame['data'].get('title', frame['data'])}")
            if frame["type"] == "bid_status_changed":
                done.set()


async def main():
    check_backend()
    customer_id, supplier_id = uuid.uuid4(), uuid.uuid4()
    customer, supplier = client_for(customer_id), client_for(supplier_id)

    ready, done = asyncio.Event(), asyncio.Event()
    listener = asyncio.create_task(listen(supplier_id, ready, done))
    await ready.wait()

    ad = expect(customer.post("/marketplace/ads", json={
        "title": "Sprinkler inspection", "category_id": "fire-safety",
    }), 201)
    bid = expect(supplier.post(f"/marketplace/ads/{ad['id']}/bids", json={"amount": 90000}), 201)
    expect(customer.put(f"/marketplace/bids/{bid['id']}/accept"), 200)

    await asyncio.wait_for(listener, timeout=10)
    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(main())
