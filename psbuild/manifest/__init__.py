"""Module manifest (.psd1) loading, rendering, and reconciliation."""

from __future__ import annotations

from .data_file import load_data_file, parse_data, render_data, write_data_file
from .reconciler import ManifestReconciler, refuse

__all__ = [
    "ManifestReconciler",
    "load_data_file",
    "parse_data",
    "refuse",
    "render_data",
    "write_data_file",
]
