"""Electron tag-and-probe pairing against superclusters.

Tags are ID-passing electrons inside the tag acceptance and outside the
barrel/endcap crack. Probes are superclusters: a probe takes its kinematics
from the first electron built on that cluster when there is one, otherwise
from the cluster itself with pt = E * sqrt(1 - tanh(eta)^2). Probe acceptance
always uses the cluster |eta|.

Each (tag, probe) pair inside the fixed 80-100 GeV window adds one to the
yield; trigger-matched probes go to HLT pass and are further split into ID
pass / fail, unmatched probes go to HLT fail.
"""

import logging

import awkward as ak
import numpy as np
from coffea.nanoevents.methods import vector

from zcounting.analysis_config import (
    ELECTRON_MASS, ELE_MASS_LOW, ELE_MASS_HIGH,
    ELECTRON_TRIGGER, ELECTRON_TRIGGER_FILTER,
    H_EE_YIELD_Z, H_EE_ID_PASS, H_EE_ID_FAIL, H_EE_HLT_PASS, H_EE_HLT_FAIL,
)
from zcounting.histograms import add_counter, fill_mass, fill_yield
from zcounting.selections import in_crack

logger = logging.getLogger(__name__)


def supercluster_pt(energy, eta):
    """Transverse momentum of a massless cluster: E * sqrt(1 - tanh(eta)^2)."""
    return energy * np.sqrt(1.0 - np.tanh(eta) ** 2)


def _lorentz(fields):
    return ak.zip(fields, with_name="PtEtaPhiMLorentzVector", behavior=vector.behavior)


def electron_tags(electrons, id_mask, cuts):
    abs_eta = np.abs(electrons.eta)
    return (
        id_mask
        & (electrons.pt >= cuts["ele_tag_pt_min"])
        & (abs_eta <= cuts["ele_tag_eta_max"])
        & ~in_crack(abs_eta, cuts)
    )


def matched_electrons(superclusters, electrons):
    """For every supercluster, the first electron whose ``scIdx`` points at it (None if none)."""
    nested = ak.cartesian(
        {"sc": ak.local_index(superclusters.energy, axis=1), "ele": electrons},
        axis=1,
        nested=True,
    )
    return ak.firsts(nested.ele[nested.ele.scIdx == nested.sc], axis=2)


def supercluster_probes(superclusters, electrons, id_mask):
    """Supercluster probe four-vectors.

    Extra fields: ``sc_idx``, ``sc_eta``, ``has_match`` (an electron was built on
    the cluster) and ``pass_id`` (that electron passes ID; False without one).
    """
    ele = ak.zip(
        {
            "pt": electrons.pt,
            "eta": electrons.eta,
            "phi": electrons.phi,
            "charge": electrons.charge,
            "scIdx": electrons.scIdx,
            "pass_id": id_mask,
        }
    )
    match = matched_electrons(superclusters, ele)
    has_match = ~ak.is_none(match, axis=1)

    sc_pt = supercluster_pt(superclusters.energy, superclusters.eta)
    return _lorentz(
        {
            "pt": ak.where(has_match, ak.fill_none(match.pt, 0.0), sc_pt),
            "eta": ak.where(has_match, ak.fill_none(match.eta, 0.0), superclusters.eta),
            "phi": ak.where(has_match, ak.fill_none(match.phi, 0.0), superclusters.phi),
            "mass": ak.full_like(sc_pt, ELECTRON_MASS),
            "charge": ak.fill_none(match.charge, 0),
            "sc_idx": ak.local_index(superclusters.energy, axis=1),
            "sc_eta": superclusters.eta,
            "has_match": has_match,
            "pass_id": ak.fill_none(match.pass_id, False),
        }
    )


def electron_pairs(tags, probes, cuts):
    """All (tag, probe) pairs passing probe acceptance, with the window and charge decision.

    Returns ``(pairs, accepted, is_z)``: ``accepted`` marks pairs passing the probe
    acceptance, ``is_z`` those also inside the mass window with a compatible charge.
    """
    pairs = ak.cartesian({"tag": tags, "probe": probes}, axis=1)
    probe = pairs.probe
    abs_sc_eta = np.abs(probe.sc_eta)
    accepted = (
        (probe.sc_idx != pairs.tag.scIdx)
        & (probe.pt >= cuts["ele_probe_pt_min"])
        & (abs_sc_eta <= cuts["ele_probe_eta_max"])
        & ~in_crack(abs_sc_eta, cuts)
    )
    mass = (pairs.tag + probe).mass
    opposite = ~probe.has_match | (probe.charge == -pairs.tag.charge)
    is_z = accepted & (mass >= ELE_MASS_LOW) & (mass <= ELE_MASS_HIGH) & opposite

    pairs = ak.zip({"tag": pairs.tag, "probe": probe, "mass": mass}, depth_limit=2)
    return pairs, accepted, is_z


def fill_electron_pairs(output, lumi, pairs, is_z):
    hlt_pass = is_z & pairs.probe.hlt_matched
    hlt_fail = is_z & ~pairs.probe.hlt_matched
    id_pass = hlt_pass & pairs.probe.has_match & pairs.probe.pass_id

    fill_yield(output, H_EE_YIELD_Z, lumi, is_z)
    fill_mass(output, H_EE_HLT_PASS, lumi, pairs.mass[hlt_pass])
    fill_mass(output, H_EE_ID_PASS, lumi, pairs.mass[id_pass])
    fill_mass(output, H_EE_ID_FAIL, lumi, pairs.mass[hlt_pass & ~id_pass])
    fill_mass(output, H_EE_HLT_FAIL, lumi, pairs.mass[hlt_fail])


def analyze_electrons(output, lumi, electrons, superclusters, trigobjs, gate, electron_id, cuts):
    """Run the electron channel on events that already passed vertex and path gates.

    ``electron_id`` must already hold this chunk's conditioning.
    """
    id_mask = electron_id.pass_id(electrons)
    matched = gate.object_matches(trigobjs, ELECTRON_TRIGGER, ELECTRON_TRIGGER_FILTER, electrons)
    add_counter(output, "n_ele_before_trigger", ak.sum(id_mask))
    add_counter(output, "n_ele_after_trigger", ak.sum(id_mask & matched))

    tag_mask = electron_tags(electrons, id_mask, cuts)
    add_counter(output, "n_ele_tags", ak.sum(tag_mask))
    tags = _lorentz(
        {
            "pt": electrons.pt,
            "eta": electrons.eta,
            "phi": electrons.phi,
            "mass": ak.full_like(electrons.pt, ELECTRON_MASS),
            "charge": electrons.charge,
            "scIdx": electrons.scIdx,
        }
    )[tag_mask]

    probes = supercluster_probes(superclusters, electrons, id_mask)
    probes = ak.with_field(
        probes,
        gate.object_matches(trigobjs, ELECTRON_TRIGGER, ELECTRON_TRIGGER_FILTER, probes),
        "hlt_matched",
    )

    pairs, accepted, is_z = electron_pairs(tags, probes, cuts)
    add_counter(output, "n_ele_probes", ak.sum(accepted))
    add_counter(output, "n_ele_z", ak.sum(is_z))
    fill_electron_pairs(output, lumi, pairs, is_z)
    return pairs, is_z
