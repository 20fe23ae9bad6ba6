from __future__ import annotations

import shutil
import sys
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from hypeledger.core.config import Config  # noqa: E402
from hypeledger.core.events import DropStatus  # noqa: E402
from hypeledger.core.metrics import MetricsRegistry  # noqa: E402
from hypeledger.core.models import Drop  # noqa: E402
from hypeledger.core.time import utc_now  # noqa: E402
from hypeledger.ledger.attribution import AttributionEngine  # noqa: E402


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture()
def test_config(temp_dir: Path) -> Config:
    """Config fixture that points data_dir to a temp directory."""

    cfg_src = REPO_ROOT / "config" / "default.yaml"
    cfg_dst_dir = temp_dir / "config"
    cfg_dst_dir.mkdir(parents=True, exist_ok=True)

    # copy default + presets
    shutil.copy2(cfg_src, cfg_dst_dir / "default.yaml")
    shutil.copytree(REPO_ROOT / "config" / "presets", cfg_dst_dir / "presets")

    c = Config.from_yaml(cfg_dst_dir / "default.yaml")
    return c.model_copy(update={"data_dir": temp_dir / "data", "config_dir": cfg_dst_dir})


@pytest.fixture()
def engine(test_config: Config) -> Iterator[AttributionEngine]:
    eng = AttributionEngine(test_config, metrics=MetricsRegistry())
    yield eng
    eng.db.close()


@pytest.fixture()
def make_drop(engine: AttributionEngine) -> Callable[..., Drop]:
    """Create an active drop that opened a day ago and runs for a week."""

    def _make(
        drop_id: str = "drop-1",
        *,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
        activate: bool = True,
        **kwargs,
    ) -> Drop:
        start = starts_at or utc_now() - timedelta(days=1)
        end = ends_at or start + timedelta(days=8)
        drop = engine.drops.create(drop_id=drop_id, starts_at=start, ends_at=end, **kwargs)
        if activate:
            drop = engine.drops.transition(drop_id, DropStatus.ACTIVE)
        return drop

    return _make
