"""Batch report loading and plotting."""

from screendock.reporting.loaders import load_job_table, load_jsonl, summarize_jobs
from screendock.reporting.plots import plot_energy_histogram, plot_failures

__all__ = [
    "load_job_table",
    "load_jsonl",
    "plot_energy_histogram",
    "plot_failures",
    "summarize_jobs",
]
