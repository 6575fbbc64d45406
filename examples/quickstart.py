#!/usr/bin/env python3
"""
Firemarket Quickstart — one ad from posting to a chosen supplier.

Customer posts an ad → two suppliers bid → customer accepts one →
the other is rejected automatically → everyone's inbox shows why.
Run with: python examples/quickstart.py

Requires: pip install -e .
Backend must be running: http://localhost:8000
"""

import uuid

from _common import check_backend, client_for, expect


def main():
    check_backend()

    customer_id, alpha_id, beta_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    customer = client_for(customer_id)
    alpha = client_for(alpha_id)
    beta = client_for(beta_id)

    # ── Post an ad ────────────────────────────────────────────────
    print("\n1. Customer posts an ad...")
    ad = expect(customer.post("/marketplace/ads", json={
        "title": "Fire alarm system for a 3-storey office",
        "category_id": "fire-safety",
        "budget": 1500000,
        "city": "Almaty",
    }), 201)
    print(f"   Ad: {ad['title']} ({ad['slug']})")

    # ── Suppliers bid ─────────────────────────────────────────────
    print("\n2. Suppliers bid...")
    bid_a = expect(alpha.post(f"/marketplace/ads/{ad['id']}/bids", json={
        "amount": 1350000, "message": "Two weeks, certified installers",
    }), 201)
    bid_b = expect(beta.post(f"/marketplace/ads/{ad['id']}/bids", json={
        "amount": 1200000, "message": "Ten days",
    }), 201)
    print(f"   Alpha: {bid_a['amount']:,.0f} {bid_a['currency']}")
    print(f"   Beta:  {bid_b['amount']:,.0f} {bid_b['currency']}")

    detail = expect(customer.get(f"/marketplace/ads/{ad['id']}"), 200)
    print(f"   Ad is now: {detail['effective_status']} ({detail['bid_count']} bids)")

    # ── Accept ────────────────────────────────────────────────────
    print("\n3. Customer accepts Beta's bid...")
    expect(customer.put(f"/marketplace/bids/{bid_b['id']}/accept"), 200)
    detail = expect(customer.get(f"/marketplace/ads/{ad['id']}"), 200)
    for bid in detail["bids"]:
        marker = "★" if bid["is_selected"] else " "
        print(f"   {marker} {bid['amount']:,.0f} → {bid['status']}")

    # A second accept is refused: the ad is no longer open.
    resp = customer.put(f"/marketplace/bids/{bid_a['id']}/accept")
    print(f"   Accepting Alpha now → {resp.status_code} ({resp.json()['detail']})")

    # ── Inboxes ───────────────────────────────────────────────────
    print("\n4. Notifications:")
    for name, client in (("Customer", customer), ("Alpha", alpha), ("Beta", beta)):
        for n in expect(client.get("/notifications"), 200):
            print(f"   {name:<8} [{n['type']}] {n['title']}")

    print("\nDone.")


if __name__ == "__main__":
    main()
