import json
from pathlib import Path

import pytest

from utils import SAMPLE_RATE_IN_HZ, RealSamples
from utils.tx import generate_wspr_pcm


def pytest_configure(config):
    # Metrics for the noisy round-trip sweep
    config._wsprr_metrics = {"decoded": 0, "total": 0}


@pytest.fixture(scope="session")
def wsprr_metrics(request):
    return request.config._wsprr_metrics


@pytest.fixture(scope="session")
def w1aw_pcm():
    """One clean transmission of ``W1AW FN31 10`` at 1500 Hz."""
    return generate_wspr_pcm("W1AW", "FN31", 10)


@pytest.fixture(scope="session")
def w1aw_audio(w1aw_pcm):
    return RealSamples.from_pcm(w1aw_pcm, SAMPLE_RATE_IN_HZ)


def pytest_terminal_summary(terminalreporter, exitstatus, config):
    metrics = getattr(config, "_wsprr_metrics", None)
    if not metrics:
        return
    total = int(metrics.get("total") or 0)
    decoded = int(metrics.get("decoded") or 0)
    if total <= 0:
        return
    percent = 100.0 * decoded / total
    line = f"WSPRR noisy round trips: {decoded}/{total} ({percent:.1f}%)"
    terminalreporter.write_sep("=", line)

    # Persist for CI to parse
    out_dir = Path(".tmp")
    out_dir.mkdir(parents=True, exist_ok=True)
    out_file = out_dir / "wsprr_roundtrip_metrics.json"
    out_file.write_text(
        json.dumps({"decoded": decoded, "total": total, "percent": percent}, indent=2)
    )
