"""hypeledger.core.webhooks

Outbound notification webhooks for journaled ledger events.

Badge and notification services subscribe with comma-separated globs over event
types (``ledger.transition.*``) or transition kinds (``click_threshold``).
Delivery is best-effort: a failing endpoint never blocks or undoes a ledger write.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any

from hypeledger.core.database import Database
from hypeledger.core.models import Event
from hypeledger.core.time import to_iso

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class WebhookSubscription:
    id: int
    url: str
    event_globs: str
    enabled: bool
    created_at: str


def _split_event_globs(event_globs: str) -> list[str]:
    parts = [p.strip() for p in event_globs.split(",")]
    return [p for p in parts if p]


def subscription_matches(sub: WebhookSubscription, *, event_type: str, kind: str | None = None) -> bool:
    for g in _split_event_globs(sub.event_globs):
        if fnmatchcase(event_type, g):
            return True
        if kind is not None and fnmatchcase(kind, g):
            return True
    return False


def _row_to_subscription(r: Any) -> WebhookSubscription:
    return WebhookSubscription(
        id=int(r[0]),
        url=str(r[1]),
        event_globs=str(r[2]),
        enabled=bool(int(r[3])),
        created_at=str(r[4]),
    )


def list_webhook_subscriptions(db: Database, *, enabled_only: bool = False) -> list[WebhookSubscription]:
    q = "SELECT id, url, event_globs, enabled, created_at FROM webhook_subscriptions"
    if enabled_only:
        q += " WHERE enabled = 1"
    rows = db.conn.execute(q + " ORDER BY id ASC").fetchall()
    return [_row_to_subscription(r) for r in rows]


def add_webhook_subscription(db: Database, *, url: str, event_globs: str, enabled: bool = True) -> int:
    with db.transaction() as conn:
        cur = conn.execute(
            "INSERT INTO webhook_subscriptions (url, event_globs, enabled) VALUES (?, ?, ?)",
            (url, event_globs, 1 if enabled else 0),
        )
    return int(cur.lastrowid)


def remove_webhook_subscription(db: Database, *, sub_id: int) -> bool:
    with db.transaction() as conn:
        cur = conn.execute("DELETE FROM webhook_subscriptions WHERE id = ?", (int(sub_id),))
    return int(cur.rowcount) > 0


def _post_json(url: str, payload: dict[str, Any], *, timeout_s: float) -> None:
    body = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=body,
        method="POST",
        headers={"Content-Type": "application/json", "User-Agent": "hypeledger-webhooks/1"},
    )
    # urlopen timeout covers connect + read.
    with urllib.request.urlopen(req, timeout=timeout_s) as resp:  # noqa: S310
        _ = resp.read()


def dispatch_event_webhooks(db: Database, event: Event, *, timeout_s: float = 3.0, backoff_s: float = 0.5) -> int:
    """Deliver a committed journal event to every matching subscription.

    Each subscription gets up to three attempts with exponential backoff.
    Returns the number of subscriptions that accepted the event.
    """

    event_type = str(event.type)
    kind = event.payload.get("kind")
    subs = list_webhook_subscriptions(db, enabled_only=True)
    if not subs:
        return 0

    payload = {
        "event": {
            "id": event.id,
            "type": event_type,
            "ts": to_iso(event.ts),
            "source": event.source,
            "dedupe_key": event.dedupe_key,
            "payload": event.payload,
        }
    }

    delivered = 0
    for sub in subs:
        if not subscription_matches(sub, event_type=event_type, kind=str(kind) if kind else None):
            continue

        delay = backoff_s
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                _post_json(sub.url, payload, timeout_s=timeout_s)
                delivered += 1
                break
            except (urllib.error.URLError, TimeoutError, ValueError) as e:
                if attempt < MAX_ATTEMPTS:
                    time.sleep(delay)
                    delay *= 2
                else:
                    logger.warning(
                        "webhook_delivery_failed",
                        extra={"subscription_id": sub.id, "event_type": event_type, "error": str(e)},
                    )
    return delivered
