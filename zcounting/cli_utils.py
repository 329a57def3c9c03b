from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path

from zcounting.analysis_config import build_binning, build_cuts

logger = logging.getLogger(__name__)


def _short_list(items: list[str], *, limit: int = 8) -> str:
    if not items:
        return "(none)"
    if len(items) <= limit:
        return ", ".join(items)
    return ", ".join(items[:limit]) + f", ... (+{len(items) - limit} more)"


def load_json(filepath):
    """Load JSON data from the specified file."""
    try:
        with open(filepath, "r", encoding="utf-8") as file:
            data = json.load(file)
    except Exception as e:
        raise RuntimeError(f"Failed to read JSON file {filepath}: {e}") from e
    logger.info("Successfully loaded JSON file: %s", filepath)
    return data


def validate_fileset_schema(fileset: object, *, filepath: str | None = None) -> None:
    """Validate that the fileset matches what `bin/run_zcounting.py` expects.

    Expected structure:
      {dataset_key: {"files": {path: "Events", ...}, "metadata": {...}}, ...}

    ``metadata`` is optional; when present it must be an object.
    """
    where = f" ({filepath})" if filepath else ""

    if not isinstance(fileset, Mapping):
        raise ValueError(f"Fileset must be a JSON object (dict-like){where}.")

    if not fileset:
        raise ValueError(f"Fileset is empty{where}.")

    for ds_key, ds_val in fileset.items():
        if not isinstance(ds_key, str):
            raise ValueError(f"Fileset dataset key must be a string{where}.")
        if not isinstance(ds_val, Mapping):
            raise ValueError(f"Fileset['{ds_key}'] must be an object{where}.")

        files = ds_val.get("files")
        if not isinstance(files, Mapping) or not files:
            raise ValueError(f"Fileset['{ds_key}']['files'] must be a non-empty object mapping file→treename{where}.")
        md = ds_val.get("metadata", {})
        if not isinstance(md, Mapping):
            raise ValueError(f"Fileset['{ds_key}']['metadata'] must be an object{where}.")


def select_datasets(fileset: Mapping, datasets: list[str] | None) -> dict:
    """Keep only the named datasets (all of them when ``datasets`` is empty)."""
    if not datasets:
        return dict(fileset)

    unknown = [ds for ds in datasets if ds not in fileset]
    if unknown:
        raise ValueError(
            f"Unknown dataset(s) {_short_list(unknown)}. "
            f"Available datasets: {_short_list(sorted(fileset))}"
        )
    return {ds: fileset[ds] for ds in datasets}


def load_fileset(filepath: Path, *, datasets: list[str] | None = None, maxfiles: int | None = None) -> dict:
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Fileset JSON not found: {filepath}.")

    fileset = load_json(str(filepath))
    validate_fileset_schema(fileset, filepath=str(filepath))
    fileset = select_datasets(fileset, datasets)

    if maxfiles is not None:
        from coffea.dataset_tools import max_files
        fileset = max_files(fileset, maxfiles)

    return fileset


def load_overrides(filepath: Path | None, *, kind: str) -> dict:
    """Read a JSON object of cut or binning overrides; ``None`` means no overrides."""
    if filepath is None:
        return {}
    data = load_json(str(filepath))
    if not isinstance(data, Mapping):
        raise ValueError(f"{kind} overrides in {filepath} must be a JSON object.")
    return dict(data)


def load_analysis_config(cuts_path: Path | None = None, binning_path: Path | None = None):
    """Load and validate cut and binning overrides; returns the merged ``(cuts, binning)``."""
    cut_overrides = load_overrides(cuts_path, kind="Cut")
    binning_overrides = load_overrides(binning_path, kind="Binning")
    return build_cuts(cut_overrides), build_binning(binning_overrides)
