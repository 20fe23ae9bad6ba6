from __future__ import annotations

import threading
from functools import lru_cache
from pathlib import Path

from fastapi import Request

from hypeledger.core.config import Config
from hypeledger.core.database import Database
from hypeledger.ledger.attribution import AttributionEngine

_engine_lock = threading.Lock()


@lru_cache
def _repo_root() -> Path:
    # Assume running from repo root (uvicorn started there). Fallback to parent of this file.
    here = Path(__file__).resolve()
    for p in [Path.cwd(), here.parent.parent]:
        if (p / "config" / "default.yaml").exists():
            return p
    return Path.cwd()


@lru_cache
def _load_config() -> Config:
    return Config.load(_repo_root())


def get_config(request: Request) -> Config:
    cfg = getattr(request.app.state, "config", None)
    return cfg or _load_config()


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is not None:
        return db
    cfg = get_config(request)
    data_dir = cfg.data_dir if cfg.data_dir.is_absolute() else _repo_root() / cfg.data_dir
    db = Database(data_dir / "hype.db", busy_timeout_seconds=cfg.ledger.busy_timeout_seconds)
    request.app.state.db = db
    return db


def get_engine(request: Request) -> AttributionEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is not None:
        return engine
    with _engine_lock:
        engine = getattr(request.app.state, "engine", None)
        if engine is None:
            engine = AttributionEngine(get_config(request), db=get_db(request))
            request.app.state.engine = engine
    return engine
