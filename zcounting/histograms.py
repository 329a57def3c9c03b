"""Histogram booking and filling for the Z-counting processor.

Canonical naming choice:
  - Histogram key in the output dict == ROOT stem under ZCounting/Histograms

Every mass histogram is (lumi x mass); ``h_npv`` is (lumi x nvtx); yields are
1D in lumi. Axes take their (bins, min, max) from the job's binning, so the
bank is booked per processor instance rather than at import time.
"""

import logging

import awkward as ak
import hist
import numpy as np

from zcounting.analysis_config import (
    BINNING, COUNTERS,
    H_NPV, H_YIELD_Z, H_EE_YIELD_Z,
    MUON_MASS_HISTS, ELECTRON_MASS_HISTS,
    muon_hist_name,
)
from zcounting.selections import is_central

logger = logging.getLogger(__name__)

LUMI_LABEL = "Luminosity block"
MASS_LABEL = r"$m_{\ell\ell}$ [GeV]"
NPV_LABEL = "Number of good primary vertices"


def _booking_specs(binning=BINNING) -> dict[str, list[tuple[str, tuple[int, float, float], str]]]:
    """Return histogram axes keyed by canonical histogram name."""
    lumi = ("lumi", binning["lumi"], LUMI_LABEL)
    mass = ("mass", binning["mass"], MASS_LABEL)
    specs = {name: [lumi, mass] for name in MUON_MASS_HISTS + ELECTRON_MASS_HISTS}
    specs[H_NPV] = [lumi, ("npv", binning["pv"], NPV_LABEL)]
    specs[H_YIELD_Z] = [lumi]
    specs[H_EE_YIELD_Z] = [lumi]
    return specs


def create_hist(axes):
    """Create a weighted histogram with one regular axis per ``(name, bins, label)``."""
    builder = hist.Hist.new
    for name, bins, label in axes:
        builder = builder.Reg(*bins, name=name, label=label)
    return builder.Weight()


def make_output(binning=BINNING):
    """Fresh output dict: every histogram booked empty and every counter at zero."""
    output = {name: create_hist(axes) for name, axes in _booking_specs(binning).items()}
    output["counters"] = {name: 0 for name in COUNTERS}
    return output


def _flat(values):
    return ak.to_numpy(ak.flatten(values, axis=None))


def _lumi_like(lumi, values):
    """Broadcast the per-event lumi block onto a jagged per-pair array."""
    return ak.broadcast_arrays(lumi, values)[0]


def fill_mass(output, name, lumi, mass):
    """Fill ``output[name]`` once per pair; ``mass`` may be jagged, ``lumi`` is per event."""
    if len(mass) == 0:
        return
    output[name].fill(lumi=_flat(_lumi_like(lumi, mass)), mass=_flat(mass))


def fill_mass_by_region(output, leg, outcome, lumi, mass, eta):
    """Fill the central or forward histogram of one leg/outcome, split by ``eta``."""
    central = is_central(eta)
    fill_mass(output, muon_hist_name(leg, outcome, "central"), lumi, mass[central])
    fill_mass(output, muon_hist_name(leg, outcome, "forward"), lumi, mass[~central])


def fill_yield(output, name, lumi, selected):
    """Add one entry per selected pair into a 1D lumi-block yield histogram."""
    if len(selected) == 0:
        return
    output[name].fill(lumi=_flat(_lumi_like(lumi, selected)[selected]))


def fill_npv(output, lumi, nvtx):
    output[H_NPV].fill(lumi=np.asarray(lumi), npv=np.asarray(nvtx))


def add_counter(output, name, value):
    output["counters"][name] += int(value)
