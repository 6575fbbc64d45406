"""
Shared helpers for Firemarket examples.

Mints dev tokens with the backend's own JWT settings (the portal's auth
service does this in production) and returns one httpx client per user,
so each example can focus on its specific workflow.
"""

import sys
import uuid

import httpx

from firemarket.auth.jwt import create_access_token

BASE = "http://localhost:8000/api/v1"


def check_backend() -> None:
    """Verify the backend is reachable and healthy."""
    try:
        resp = httpx.get(f"{BASE}/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Backend not reachable at {BASE}")
        print("Start it with:  uvicorn firemarket.main:app --reload --port 8000")
        sys.exit(1)

    if resp.status_code != 200:
        print(f"ERROR: Health check returned {resp.status_code}")
        sys.exit(1)

    health = resp.json()
    print("Backend health:")
    print(f"  Database: {'✓' if health['database'] == 'ok' else '✗'}")
    print(f"  Sockets:  {health['realtime']['total']} connected")

    if health["database"] != "ok":
        print("\nERROR: Database is not reachable: " + health["database"])
        sys.exit(1)


def client_for(user_id: uuid.UUID, role: str | None = None) -> httpx.Client:
    """An httpx Client that acts as user_id."""
    token = create_access_token(str(user_id), role=role)
    return httpx.Client(
        base_url=BASE,
        timeout=10,
        headers={"Authorization": f"Bearer {token}"},
    )


def expect(resp: httpx.Response, status: int) -> dict:
    if resp.status_code != status:
        print(f"ERROR: {resp.request.method} {resp.request.url} → {resp.status_code} {resp.text}")
        sys.exit(1)
    return resp.json() if resp.content else {}
