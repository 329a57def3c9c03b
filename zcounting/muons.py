"""Muon tag-and-probe pairing and categorization.

Every ordered (tag, probe) muon pair inside an event is built with
``ak.cartesian``; each pair surviving the acceptance gets exactly one category
integer, and the category decides which mass histograms receive the pair:

    2HLT   probe passes ID+iso and is trigger-matched
           -> HLT/SIT/Sta pass, once in the tag's region and once in the probe's
    1HLT   probe passes ID+iso, not trigger-matched
           -> HLT fail, SIT pass, Sta pass (probe region)
    NoSel  probe is a global muon failing ID+iso -> SIT fail, Sta pass
    Sta    probe is a standalone muon            -> Sta fail
    Trk    probe inner track passes hit quality  -> Sta fail

A 2HLT pair is seen from both sides; only the direction with the lower tag
collection index is kept. Tracks that are not any muon's inner track form a
second probe set filling Sta fail only.
"""

import logging

import awkward as ak
import numpy as np
from coffea.nanoevents.methods import vector

from zcounting.analysis_config import (
    MUON_MASS, MUON_TRIGGER, MUON_TRIGGER_FILTER, H_YIELD_Z,
)
from zcounting.histograms import add_counter, fill_mass_by_region, fill_yield
from zcounting.selections import good_track

logger = logging.getLogger(__name__)

CAT_NONE = 0
CAT_2HLT = 1
CAT_1HLT = 2
CAT_NOSEL = 3
CAT_STA = 4
CAT_TRK = 5

CATEGORY_NAMES = {
    CAT_NONE: "None",
    CAT_2HLT: "2HLT",
    CAT_1HLT: "1HLT",
    CAT_NOSEL: "NoSel",
    CAT_STA: "Sta",
    CAT_TRK: "Trk",
}

# category -> [(leg, outcome, region taken from)]
MUON_CATEGORY_FILLS = {
    CAT_2HLT: [
        ("HLT", "pass", "tag"), ("SIT", "pass", "tag"), ("Sta", "pass", "tag"),
        ("HLT", "pass", "probe"), ("SIT", "pass", "probe"), ("Sta", "pass", "probe"),
    ],
    CAT_1HLT: [("HLT", "fail", "probe"), ("SIT", "pass", "probe"), ("Sta", "pass", "probe")],
    CAT_NOSEL: [("SIT", "fail", "probe"), ("Sta", "pass", "probe")],
    CAT_STA: [("Sta", "fail", "probe")],
    CAT_TRK: [("Sta", "fail", "probe")],
}
YIELD_CATEGORIES = (CAT_2HLT, CAT_1HLT)


def _lorentz(objs, mass, **extra):
    return ak.zip(
        {
            "pt": objs.pt,
            "eta": objs.eta,
            "phi": objs.phi,
            "mass": ak.full_like(objs.pt, mass),
            "charge": objs.charge,
            **extra,
        },
        with_name="PtEtaPhiMLorentzVector",
        behavior=vector.behavior,
    )


def muon_candidates(muons, pv, trigobjs, gate, muon_id, muon_iso, cuts):
    """Muon four-vectors carrying every flag the pairing needs.

    Fields: ``idx`` (collection position), ``good`` (ID+iso), ``matched``
    (object trigger match), ``is_global``, ``is_standalone``, ``good_track``
    and ``is_tag``.
    """
    good = muon_id(muons, pv) & muon_iso(muons)
    matched = gate.object_matches(trigobjs, MUON_TRIGGER, MUON_TRIGGER_FILTER, muons)
    is_tag = (
        (muons.pt >= cuts["muon_tag_pt_min"])
        & (np.abs(muons.eta) <= cuts["muon_tag_eta_max"])
        & good
        & matched
    )
    return _lorentz(
        muons,
        MUON_MASS,
        idx=ak.local_index(muons.pt, axis=1),
        good=good,
        matched=matched,
        is_global=ak.values_astype(muons.isGlobal, bool),
        is_standalone=ak.values_astype(muons.isStandalone, bool),
        good_track=good_track(muons),
        is_tag=is_tag,
    )


def track_candidates(tracks, muons):
    """Track four-vectors for tracks that are not the inner track of any muon."""
    pairs = ak.cartesian(
        {"trk": ak.local_index(tracks.pt, axis=1), "mu": muons.trackIdx},
        axis=1,
        nested=True,
    )
    is_muon = ak.any(pairs.trk == pairs.mu, axis=2)
    cands = _lorentz(tracks, MUON_MASS, good_track=good_track(tracks))
    return cands[~is_muon]


def _probe_acceptance(pairs, cuts):
    """Probe kinematics, opposite charge and the inclusive mass window."""
    mass = (pairs.tag + pairs.probe).mass
    accepted = (
        (pairs.probe.pt >= cuts["muon_probe_pt_min"])
        & (np.abs(pairs.probe.eta) <= cuts["muon_probe_eta_max"])
        & (pairs.tag.charge != pairs.probe.charge)
        & (mass >= cuts["mass_min"])
        & (mass <= cuts["mass_max"])
    )
    return accepted, mass


def classify(probe):
    """One category integer per probe, first matching rule wins."""
    return ak.where(
        probe.good & probe.matched, CAT_2HLT,
        ak.where(
            probe.good, CAT_1HLT,
            ak.where(
                probe.is_global, CAT_NOSEL,
                ak.where(
                    probe.is_standalone, CAT_STA,
                    ak.where(probe.good_track, CAT_TRK, CAT_NONE),
                ),
            ),
        ),
    )


def muon_pairs(cands, cuts):
    """Accepted (tag, probe) muon pairs with their mass and category.

    Pairs of a muon with itself are never formed. 2HLT pairs whose tag index
    is above the probe index are dropped, so the unordered pair fills once.
    """
    pairs = ak.cartesian({"tag": cands, "probe": cands}, axis=1)
    accepted, mass = _probe_acceptance(pairs, cuts)
    accepted = accepted & pairs.tag.is_tag & (pairs.tag.idx != pairs.probe.idx)

    category = classify(pairs.probe)
    duplicate = (category == CAT_2HLT) & (pairs.tag.idx > pairs.probe.idx)
    keep = accepted & ~duplicate & (category != CAT_NONE)

    pairs = ak.zip(
        {"tag": pairs.tag, "probe": pairs.probe, "mass": mass, "category": category},
        depth_limit=2,
    )
    return pairs[keep]


def track_pairs(cands, tracks, cuts):
    """Accepted (tag, track) pairs where the track meets the hit-quality bar."""
    tags = cands[cands.is_tag]
    pairs = ak.cartesian({"tag": tags, "probe": tracks}, axis=1)
    accepted, mass = _probe_acceptance(pairs, cuts)
    keep = accepted & pairs.probe.good_track
    pairs = ak.zip({"tag": pairs.tag, "probe": pairs.probe, "mass": mass}, depth_limit=2)
    return pairs[keep]


def fill_muon_pairs(output, lumi, pairs):
    for category, fills in MUON_CATEGORY_FILLS.items():
        selected = pairs[pairs.category == category]
        for leg, outcome, role in fills:
            fill_mass_by_region(output, leg, outcome, lumi, selected.mass, selected[role].eta)

    in_yield = (pairs.category == YIELD_CATEGORIES[0]) | (pairs.category == YIELD_CATEGORIES[1])
    fill_yield(output, H_YIELD_Z, lumi, in_yield)


def fill_track_pairs(output, lumi, pairs):
    fill_mass_by_region(output, "Sta", "fail", lumi, pairs.mass, pairs.probe.eta)


def analyze_muons(output, lumi, muons, tracks, pv, trigobjs, gate, muon_id, muon_iso, cuts):
    """Run the muon channel on events that already passed vertex and path gates."""
    cands = muon_candidates(muons, pv, trigobjs, gate, muon_id, muon_iso, cuts)
    add_counter(output, "n_muon_tags", ak.sum(cands.is_tag))

    pairs = muon_pairs(cands, cuts)
    fill_muon_pairs(output, lumi, pairs)

    trk_pairs = track_pairs(cands, track_candidates(tracks, muons), cuts)
    fill_track_pairs(output, lumi, trk_pairs)
    return pairs, trk_pairs
