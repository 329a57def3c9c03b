"""Lightweight configuration for the Z-counting processor.

Keep this module dependency-free so it can be shipped to Dask workers cheaply.
"""

import math

# --- Physics constants ---------------------------------------------------------
MUON_MASS = 0.105658369
ELECTRON_MASS = 0.000511

# |eta| boundary between the central and forward muon histograms
MUON_BOUND = 0.9

# Fixed Z window of the electron channel (independent of CUTS["mass_min/max"])
ELE_MASS_LOW = 80.0
ELE_MASS_HIGH = 100.0

# Tracker-track quality bar for "Trk" probes
TRACK_MIN_TRACKER_LAYERS = 6
TRACK_MIN_PIXEL_HITS = 1

# Offline-to-online matching cone
TRIGGER_MATCH_DR = 0.2

# --- Trigger records -----------------------------------------------------------
#
# Each record is one logical trigger requirement. The position in this list is
# the record's bit in the per-event trigger bitset.
MUON_TRIGGER = "HLT_IsoMu27_v*"
MUON_TRIGGER_FILTER = "hltL3crIsoL1sMu22Or25L1f0L2f10QL3f27QL3trkIsoFiltered0p07"
ELECTRON_TRIGGER = "HLT_Ele35_WPTight_Gsf_v*"
ELECTRON_TRIGGER_FILTER = "hltEle35noerWPTightGsfTrackIsoFilter"

TRIGGER_RECORDS = [
    # (path pattern, object filter label, TrigObj id, TrigObj filterBits bit)
    (MUON_TRIGGER, MUON_TRIGGER_FILTER, 13, 1),
    (ELECTRON_TRIGGER, ELECTRON_TRIGGER_FILTER, 11, 1),
]

# --- Selection strategy labels -------------------------------------------------
MUON_ID_TYPES = ("None", "Loose", "Medium", "Tight")
MUON_ISO_TYPES = ("None", "Tracker-based", "PF-based")
ELECTRON_ID_WORKING_POINTS = ("VETO", "LOOSE", "MEDIUM", "TIGHT")

# --- Physics thresholds (single source of truth for analysis cuts) -------------
CUTS = {
    "muon_tag_pt_min": 27.0,
    "muon_tag_eta_max": 2.4,
    "muon_probe_pt_min": 27.0,
    "muon_probe_eta_max": 2.4,
    "muon_iso_cut": 0.0,
    "mass_min": 66.0,
    "mass_max": 116.0,
    "ele_tag_pt_min": 40.0,
    "ele_tag_eta_max": 2.5,
    "ele_probe_pt_min": 35.0,
    "ele_probe_eta_max": 2.5,
    "ele_crack_low": 1.4442,
    "ele_crack_high": 1.566,
    "vtx_ntracks_min": 0,
    "vtx_ndof_min": 4.0,
    "vtx_abs_z_max": 24.0,
    "vtx_rho_max": 2.0,
}

# --- Histogram axes: (bins, min, max) ------------------------------------------
BINNING = {
    "lumi": (2500, 0.5, 2500.5),
    "mass": (50, 66.0, 116.0),
    "pv": (100, 0.5, 100.5),
}

# --- Histogram names -----------------------------------------------------------
MUON_LEGS = ("HLT", "SIT", "Sta")
OUTCOMES = ("pass", "fail")
REGIONS = ("central", "forward")

H_NPV = "h_npv"
H_YIELD_Z = "h_yield_Z"
H_EE_YIELD_Z = "h_ee_yield_Z"
H_EE_ID_PASS = "h_ee_mass_id_pass"
H_EE_ID_FAIL = "h_ee_mass_id_fail"
H_EE_HLT_PASS = "h_ee_mass_HLT_pass"
H_EE_HLT_FAIL = "h_ee_mass_HLT_fail"


def muon_hist_name(leg, outcome, region):
    return f"h_mass_{leg}_{outcome}_{region}"


MUON_MASS_HISTS = [
    muon_hist_name(leg, outcome, region)
    for leg in MUON_LEGS
    for outcome in OUTCOMES
    for region in REGIONS
]
ELECTRON_MASS_HISTS = [H_EE_ID_PASS, H_EE_ID_FAIL, H_EE_HLT_PASS, H_EE_HLT_FAIL]

COUNTERS = (
    "n_events",
    "n_events_good_vertex",
    "n_events_muon_trigger",
    "n_events_electron_trigger",
    "n_muon_tags",
    "n_ele_before_trigger",
    "n_ele_after_trigger",
    "n_ele_tags",
    "n_ele_probes",
    "n_ele_z",
)


def build_cuts(overrides=None):
    """Return a copy of CUTS updated with ``overrides``.

    Raises ValueError on unknown keys, non-numeric values, or inverted ranges.
    """
    cuts = dict(CUTS)
    for key, value in (overrides or {}).items():
        if key not in CUTS:
            raise ValueError(f"Unknown cut '{key}'. Valid cuts: {sorted(CUTS)}")
        if isinstance(value, bool):
            raise ValueError(f"Cut '{key}' must be numeric, got {value!r}")
        try:
            value = float(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Cut '{key}' must be numeric, got {value!r}") from e
        if not math.isfinite(value):
            raise ValueError(f"Cut '{key}' must be finite, got {value!r}")
        cuts[key] = value

    if cuts["mass_min"] >= cuts["mass_max"]:
        raise ValueError(
            f"mass_min ({cuts['mass_min']}) must be below mass_max ({cuts['mass_max']})"
        )
    if cuts["ele_crack_low"] >= cuts["ele_crack_high"]:
        raise ValueError(
            f"ele_crack_low ({cuts['ele_crack_low']}) must be below ele_crack_high ({cuts['ele_crack_high']})"
        )
    return cuts


def build_binning(overrides=None):
    """Return a copy of BINNING updated with ``overrides``.

    Each axis is ``(bins, min, max)`` with a positive integer bin count and
    ``min < max``.
    """
    binning = dict(BINNING)
    for axis, spec in (overrides or {}).items():
        if axis not in BINNING:
            raise ValueError(f"Unknown histogram axis '{axis}'. Valid axes: {sorted(BINNING)}")
        try:
            bins, lo, hi = spec
        except (TypeError, ValueError) as e:
            raise ValueError(f"Binning for '{axis}' must be (bins, min, max), got {spec!r}") from e
        if isinstance(bins, bool) or int(bins) != bins or int(bins) < 1:
            raise ValueError(f"Bin count for '{axis}' must be a positive integer, got {bins!r}")
        binning[axis] = (int(bins), float(lo), float(hi))

    for axis, (bins, lo, hi) in binning.items():
        if lo >= hi:
            raise ValueError(f"Axis '{axis}' has min ({lo}) >= max ({hi})")
    return binning
