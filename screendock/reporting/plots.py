"""Plots for batch reports."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd

if TYPE_CHECKING:
    import matplotlib.pyplot as plt


def plot_energy_histogram(frame: pd.DataFrame, out_png: str | Path, bins: int = 20) -> bool:
    """Histogram of best energies over successful jobs; False when there is nothing to plot."""

    energies = pd.to_numeric(frame.loc[frame["status"] == "ok", "best_energy"], errors="coerce").dropna()
    if energies.empty:
        return False

    plt = _load_pyplot()
    fig, ax = plt.subplots()
    ax.hist(energies.to_numpy(), bins=max(1, int(bins)), color="tab:blue", alpha=0.8)
    ax.axvline(float(energies.min()), color="tab:red", linestyle="--", label="best")
    ax.set_title("Best affinity per ligand")
    ax.set_xlabel("Affinity (kcal/mol)")
    ax.set_ylabel("Ligands")
    ax.legend()
    _save_figure(fig, out_png)
    return True


def plot_failures(frame: pd.DataFrame, out_png: str | Path) -> bool:
    """Bar chart of failed jobs per error kind."""

    failed = frame[frame["status"] != "ok"]
    if failed.empty:
        return False
    counts = failed["error_kind"].fillna("unknown").astype(str).value_counts()

    plt = _load_pyplot()
    fig, ax = plt.subplots()
    ax.bar(list(counts.index), list(counts.values), color="tab:orange")
    ax.set_title("Failed ligands by error kind")
    ax.set_ylabel("Ligands")
    _save_figure(fig, out_png)
    return True


def _save_figure(fig: "plt.Figure", out_png: str | Path) -> None:
    path = Path(out_png)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, bbox_inches="tight")
    _load_pyplot().close(fig)


def _load_pyplot() -> "plt":
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError as exc:  # pragma: no cover - depends on the environment
        raise RuntimeError("matplotlib is not available for plotting.") from exc
    return plt
