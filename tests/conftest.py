from __future__ import annotations

from datetime import datetime, timezone
import os
from pathlib import Path
import shutil
from typing import Iterator
from uuid import uuid4

import pytest

from telemetry_hub.storage.telemetry_store import TelemetryStore

# SQLite databases and report files stay under the workspace instead of the system temp dir.
_TMP_ROOT = Path(os.environ.get("TELEMETRY_HUB_TEST_TMP", ".tmp/telemetry-hub-tests"))


@pytest.fixture
def tmp_path() -> Iterator[Path]:
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    case_dir = _TMP_ROOT / f"case-{ts}-{uuid4().hex[:8]}"
    case_dir.mkdir(parents=True, exist_ok=False)
    yield case_dir
    shutil.rmtree(case_dir, ignore_errors=True)


@pytest.fixture
def telemetry_store(tmp_path: Path) -> TelemetryStore:
    return TelemetryStore(str(tmp_path / "telemetry.db"))


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    shutil.rmtree(_TMP_ROOT, ignore_errors=True)
