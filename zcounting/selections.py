"""Muon identification / isolation strategies and track-quality predicates.

ID and isolation modes are resolved once from their configuration labels into
plain functions (``muon_id_selector`` / ``muon_iso_selector``) so the processor
never re-branches on the mode per object. All predicates return jagged boolean
masks aligned with their input collection.
"""

from functools import partial

import awkward as ak
import numpy as np

from zcounting.analysis_config import (
    MUON_BOUND, MUON_ID_TYPES, MUON_ISO_TYPES,
    TRACK_MIN_PIXEL_HITS, TRACK_MIN_TRACKER_LAYERS,
)

# Tight muon ID thresholds
TIGHT_MAX_NORM_CHI2 = 10.0
TIGHT_MAX_DXY = 0.2
TIGHT_MAX_DZ = 0.5
TIGHT_MIN_TRACKER_LAYERS = 6


def impact_parameters(muons, pv):
    """Transverse and longitudinal impact parameters of ``muons`` w.r.t. ``pv``.

    Uses the muon reference point (vx, vy, vz) and momentum direction, i.e. the
    straight-line extrapolation used by the tracking ``dxy(point)`` / ``dz(point)``.
    """
    px = muons.pt * np.cos(muons.phi)
    py = muons.pt * np.sin(muons.phi)
    pz = muons.pt * np.sinh(muons.eta)
    dx = muons.vx - pv.x
    dy = muons.vy - pv.y
    dxy = (-dx * py + dy * px) / muons.pt
    dz = (muons.vz - pv.z) - (dx * px + dy * py) / muons.pt * (pz / muons.pt)
    return dxy, dz


def _pass_all_id(muons, pv):
    return ak.ones_like(muons.pt, dtype=bool)


def _loose_id(muons, pv):
    return ak.values_astype(muons.looseId, bool)


def _medium_id(muons, pv):
    return ak.values_astype(muons.mediumId, bool)


def _tight_id(muons, pv):
    dxy, dz = impact_parameters(muons, pv)
    passes = (
        ak.values_astype(muons.isGlobal, bool)
        & ak.values_astype(muons.isPFcand, bool)
        & (muons.globalNormChi2 < TIGHT_MAX_NORM_CHI2)
        & (muons.nValidMuonHits > 0)
        & (muons.nStations > 1)
        & (np.abs(dxy) < TIGHT_MAX_DXY)
        & (np.abs(dz) < TIGHT_MAX_DZ)
        & (muons.nValidPixelHits > 0)
        & (muons.nTrackerLayers >= TIGHT_MIN_TRACKER_LAYERS)
    )
    return ak.fill_none(passes, False)


MUON_ID_SELECTORS = {
    "None": _pass_all_id,
    "Loose": _loose_id,
    "Medium": _medium_id,
    "Tight": _tight_id,
}


def _pass_all_iso(muons, iso_cut):
    return ak.ones_like(muons.pt, dtype=bool)


def _tracker_iso(muons, iso_cut):
    return muons.isoR03_sumPt < iso_cut


def _pf_iso(muons, iso_cut):
    # Delta-beta corrected PF isolation (absolute).
    neutral = muons.pfIsoR04_sumNeutralHadronEt + muons.pfIsoR04_sumPhotonEt - 0.5 * muons.pfIsoR04_sumPUPt
    return (muons.pfIsoR04_sumChargedHadronPt + np.maximum(0.0, neutral)) < iso_cut


MUON_ISO_SELECTORS = {
    "None": _pass_all_iso,
    "Tracker-based": _tracker_iso,
    "PF-based": _pf_iso,
}


def muon_id_selector(id_type):
    """Return ``f(muons, pv) -> mask`` for an ID label in ``MUON_ID_TYPES``."""
    if id_type not in MUON_ID_TYPES:
        raise ValueError(f"Invalid muon ID type '{id_type}'. Must be one of {list(MUON_ID_TYPES)}.")
    return MUON_ID_SELECTORS[id_type]


def muon_iso_selector(iso_type, iso_cut):
    """Return ``f(muons) -> mask`` for an isolation label in ``MUON_ISO_TYPES``."""
    if iso_type not in MUON_ISO_TYPES:
        raise ValueError(f"Invalid muon isolation type '{iso_type}'. Must be one of {list(MUON_ISO_TYPES)}.")
    return partial(MUON_ISO_SELECTORS[iso_type], iso_cut=float(iso_cut))


def good_track(objs):
    """Hit-pattern quality bar for tracker-track probes."""
    return (objs.nTrackerLayers >= TRACK_MIN_TRACKER_LAYERS) & (objs.nValidPixelHits >= TRACK_MIN_PIXEL_HITS)


def is_central(eta):
    return np.abs(eta) < MUON_BOUND


def in_crack(abs_eta, cuts):
    """True inside the open (ele_crack_low, ele_crack_high) |eta| band."""
    return (abs_eta > cuts["ele_crack_low"]) & (abs_eta < cuts["ele_crack_high"])
