from pathlib import Path

import pandas as pd
import pytest

pytest.importorskip("matplotlib")

from screendock.reporting.plots import plot_energy_histogram, plot_failures


def test_plots_write_pngs(tmp_path: Path) -> None:
    frame = pd.DataFrame(
        {
            "status": ["ok", "ok", "failed"],
            "best_energy": [-7.1, -5.4, None],
            "error_kind": [None, None, "ParseError"],
        }
    )
    hist_png = tmp_path / "hist.png"
    fail_png = tmp_path / "plots" / "failures.png"

    assert plot_energy_histogram(frame, hist_png)
    assert plot_failures(frame, fail_png)
    assert hist_png.exists()
    assert fail_png.exists()


def test_histogram_without_successes_is_skipped(tmp_path: Path) -> None:
    frame = pd.DataFrame({"status": ["failed"], "best_energy": [None], "error_kind": ["FileAccessError"]})
    assert not plot_energy_histogram(frame, tmp_path / "hist.png")
    assert not (tmp_path / "hist.png").exists()
