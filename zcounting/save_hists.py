import logging
from pathlib import Path

import uproot
from hist import Hist

from zcounting.analysis_config import COUNTERS

logger = logging.getLogger(__name__)

HISTOGRAM_FOLDER = "ZCounting/Histograms"


def sum_hists(my_hists):
    """Sum the histograms of every dataset payload into one dict keyed by name."""
    if not my_hists:
        raise ValueError("No histogram data provided.")

    original_histograms = list(my_hists.values())[0]
    sum_histograms = {
        key: Hist(*original_histograms[key].axes, storage=original_histograms[key].storage_type())
        for key in original_histograms
        if isinstance(original_histograms[key], Hist)
    }

    for dataset_info in my_hists.values():
        for key, value in dataset_info.items():
            if not isinstance(value, Hist):
                continue
            if key in sum_histograms:
                sum_histograms[key] += value
            else:
                sum_histograms[key] = value.copy()

    return sum_histograms


def sum_counters(my_hists):
    """Add up ``counters`` across dataset payloads; unknown keys are kept."""
    totals = {name: 0 for name in COUNTERS}
    for dataset_info in my_hists.values():
        for key, value in (dataset_info.get("counters") or {}).items():
            totals[key] = totals.get(key, 0) + int(value)
    return totals


def save_histograms(histograms, output_file):
    """Write the summed histogram bank to ``output_file`` under ``ZCounting/Histograms``.

    Returns the summed counters so the caller can report them.
    """
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    summed = sum_hists(histograms)
    counters = sum_counters(histograms)

    with uproot.recreate(output_file) as root_file:
        for name, hist_obj in summed.items():
            root_file[f"{HISTOGRAM_FOLDER}/{name}"] = hist_obj

    logger.info("Histograms saved to %s.", output_file)
    return counters
