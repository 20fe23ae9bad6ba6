from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from hypeledger.core.config import ClickTier
from hypeledger.core.database import Database
from hypeledger.core.events import DropStatus
from hypeledger.core.exceptions import DropNotFound, LedgerError, ValidationError
from hypeledger.ledger.registry import DropRegistry, UserRegistry

START = datetime(2026, 3, 2, 9, tzinfo=UTC)
END = START + timedelta(days=7)


@pytest.fixture()
def db(temp_dir: Path):
    d = Database(temp_dir / "hype.db")
    yield d
    d.close()


def test_create_and_read_back_overrides(db: Database) -> None:
    drops = DropRegistry(db)
    tiers = [ClickTier(upto=5, points=20), ClickTier(points=5)]
    created = drops.create(drop_id="launch", name="Launch", starts_at=START, ends_at=END, base_points=80, click_tiers=tiers)

    got = drops.require("launch")
    assert got.status == DropStatus.DRAFT
    assert got.base_points == 80
    assert got.click_tiers == tiers
    assert got.starts_at == created.starts_at


def test_window_must_be_ordered(db: Database) -> None:
    with pytest.raises(ValidationError) as e:
        DropRegistry(db).create(drop_id="bad", starts_at=END, ends_at=START)
    assert e.value.code == "drop.invalid"


def test_duplicate_drop_id(db: Database) -> None:
    drops = DropRegistry(db)
    drops.create(drop_id="launch", starts_at=START, ends_at=END)
    with pytest.raises(ValidationError) as e:
        drops.create(drop_id="launch", starts_at=START, ends_at=END)
    assert e.value.code == "drop.duplicate"


def test_unknown_drop(db: Database) -> None:
    drops = DropRegistry(db)
    assert drops.get("nope") is None
    with pytest.raises(DropNotFound):
        drops.require("nope")


def test_status_only_moves_forward(db: Database) -> None:
    drops = DropRegistry(db)
    drops.create(drop_id="launch", starts_at=START, ends_at=END)

    assert drops.transition("launch", DropStatus.ACTIVE).status == DropStatus.ACTIVE
    assert drops.transition("launch", DropStatus.ACTIVE).status == DropStatus.ACTIVE  # no-op
    assert drops.transition("launch", DropStatus.COMPLETED).status == DropStatus.COMPLETED

    with pytest.raises(ValidationError) as e:
        drops.transition("launch", DropStatus.ACTIVE)
    assert e.value.code == "drop.illegal_transition"


def test_list_by_status(db: Database) -> None:
    drops = DropRegistry(db)
    drops.create(drop_id="b", starts_at=START + timedelta(days=1), ends_at=END)
    drops.create(drop_id="a", starts_at=START, ends_at=END)
    drops.transition("b", DropStatus.ACTIVE)

    assert [d.id for d in drops.list_all()] == ["a", "b"]
    assert [d.id for d in drops.list_all(status=DropStatus.ACTIVE)] == ["b"]


def test_accepts_events_only_inside_active_window(db: Database) -> None:
    drops = DropRegistry(db)
    draft = drops.create(drop_id="launch", starts_at=START, ends_at=END)
    assert not draft.accepts_events_at(START + timedelta(hours=1))

    active = drops.transition("launch", DropStatus.ACTIVE)
    assert active.accepts_events_at(START)
    assert active.accepts_events_at(END)
    assert not active.accepts_events_at(START - timedelta(seconds=1))
    assert not active.accepts_events_at(END + timedelta(seconds=1))


def test_users_refresh_self_reported_fields(db: Database) -> None:
    users = UserRegistry(db)
    users.ensure("ada@example.com", followers=100, team="blue")
    u = users.ensure("ada@example.com")
    assert (u.followers, u.team) == (100, "blue")

    u = users.ensure("ada@example.com", followers=250)
    assert (u.followers, u.team) == (250, "blue")


def test_archive_hides_user(db: Database) -> None:
    users = UserRegistry(db)
    users.ensure("ada@example.com")
    users.ensure("bob@example.com")

    assert users.archive("bob@example.com") is True
    assert users.archive("nobody@example.com") is False
    assert [u.id for u in users.list_all()] == ["ada@example.com"]
    assert len(users.list_all(include_archived=True)) == 2
    assert users.get("bob@example.com").archived


def test_ensure_raises_when_the_row_is_missing(db: Database, monkeypatch) -> None:
    users = UserRegistry(db)
    monkeypatch.setattr(users, "get", lambda user_id: None)
    with pytest.raises(LedgerError):
        users.ensure("ada@example.com")


def test_list_users_updated_since(db: Database) -> None:
    users = UserRegistry(db)
    users.ensure("ada@example.com")
    cutoff = datetime.now(UTC)
    users.ensure("bob@example.com")

    assert [u.id for u in users.list_all(updated_since=cutoff)] == ["bob@example.com"]
