"""Cut-based electron identification (Fall17 V2 working points).

The identifier needs per-chunk conditioning before any evaluation: the pile-up
density rho, the beamspot position and the conversion candidates. They are
pushed in with ``set_rho`` / ``set_beamspot`` / ``set_conversions`` (or all at
once from an events chunk with ``set_event_conditions``) and must be refreshed
for every chunk, even by working points that would ignore some of them.
"""

import logging

import awkward as ak
import numpy as np

from zcounting.analysis_config import ELECTRON_ID_WORKING_POINTS

logger = logging.getLogger(__name__)

BARREL_MAX_SC_ETA = 1.479

# Conversion veto: vertex fit probability and transverse displacement from the beamspot
CONVERSION_MIN_VTX_PROB = 1e-6
CONVERSION_MIN_LXY = 2.0

# Effective areas for the rho correction of the PF isolation, binned in |scEta|.
EFFECTIVE_AREA_EDGES = np.array([0.0, 1.0, 1.479, 2.0, 2.2, 2.3, 2.4])
EFFECTIVE_AREAS = np.array([0.1440, 0.1562, 0.1032, 0.0859, 0.1116, 0.1321, 0.1654])

# Per working point and detector part:
#   sieie, |dEtaSeed|, |dPhiIn|: upper bounds
#   hoe: (C0, CE, Cr) -> H/E < C0 + CE / E_sc + Cr * rho / E_sc
#   rel_iso: (C0, Cpt) -> relIso < C0 + Cpt / pt
#   eInvMinusPInv: upper bound on |1/E - 1/p|
#   lost_hits: maximum number of missing inner hits
ELECTRON_ID_CUTS = {
    "VETO": {
        "barrel": {
            "sieie": 0.0126, "dEtaSeed": 0.00463, "dPhiIn": 0.148,
            "hoe": (0.05, 1.16, 0.0324), "rel_iso": (0.198, 0.506),
            "eInvMinusPInv": 0.209, "lost_hits": 2,
        },
        "endcap": {
            "sieie": 0.0457, "dEtaSeed": 0.00814, "dPhiIn": 0.19,
            "hoe": (0.05, 2.54, 0.183), "rel_iso": (0.203, 0.963),
            "eInvMinusPInv": 0.132, "lost_hits": 3,
        },
    },
    "LOOSE": {
        "barrel": {
            "sieie": 0.0112, "dEtaSeed": 0.00377, "dPhiIn": 0.0884,
            "hoe": (0.05, 1.16, 0.0324), "rel_iso": (0.112, 0.506),
            "eInvMinusPInv": 0.193, "lost_hits": 1,
        },
        "endcap": {
            "sieie": 0.0425, "dEtaSeed": 0.00674, "dPhiIn": 0.169,
            "hoe": (0.0441, 2.54, 0.183), "rel_iso": (0.108, 0.963),
            "eInvMinusPInv": 0.111, "lost_hits": 1,
        },
    },
    "MEDIUM": {
        "barrel": {
            "sieie": 0.0106, "dEtaSeed": 0.0032, "dPhiIn": 0.0547,
            "hoe": (0.046, 1.16, 0.0324), "rel_iso": (0.0478, 0.506),
            "eInvMinusPInv": 0.184, "lost_hits": 1,
        },
        "endcap": {
            "sieie": 0.0387, "dEtaSeed": 0.00632, "dPhiIn": 0.0394,
            "hoe": (0.0275, 2.52, 0.183), "rel_iso": (0.0658, 0.963),
            "eInvMinusPInv": 0.0721, "lost_hits": 1,
        },
    },
    "TIGHT": {
        "barrel": {
            "sieie": 0.0104, "dEtaSeed": 0.00255, "dPhiIn": 0.022,
            "hoe": (0.026, 1.15, 0.0324), "rel_iso": (0.0287, 0.506),
            "eInvMinusPInv": 0.159, "lost_hits": 1,
        },
        "endcap": {
            "sieie": 0.0353, "dEtaSeed": 0.00501, "dPhiIn": 0.0236,
            "hoe": (0.0188, 2.06, 0.183), "rel_iso": (0.0445, 0.963),
            "eInvMinusPInv": 0.0197, "lost_hits": 1,
        },
    },
}


def effective_area(abs_sc_eta):
    """Effective area for each electron, looked up from its |scEta|."""
    flat = ak.to_numpy(ak.flatten(abs_sc_eta, axis=None))
    idx = np.clip(np.digitize(flat, EFFECTIVE_AREA_EDGES) - 1, 0, len(EFFECTIVE_AREAS) - 1)
    areas = EFFECTIVE_AREAS[idx]
    if abs_sc_eta.ndim == 1:
        return ak.Array(areas)
    return ak.unflatten(areas, ak.num(abs_sc_eta, axis=1))


def conversion_lxy(conversions, beamspot):
    """Signed transverse displacement of each conversion vertex along its momentum."""
    dx = conversions.vx - beamspot.x
    dy = conversions.vy - beamspot.y
    return (dx * conversions.px + dy * conversions.py) / np.hypot(conversions.px, conversions.py)


class ElectronIdentifier:
    """Evaluate one cut-based working point on jagged electron collections."""

    def __init__(self, working_point="TIGHT"):
        self.set_id(working_point)
        self.clear()

    def set_id(self, working_point):
        wp = str(working_point).upper()
        if wp not in ELECTRON_ID_WORKING_POINTS:
            raise ValueError(
                f"Invalid electron ID working point '{working_point}'. "
                f"Must be one of {list(ELECTRON_ID_WORKING_POINTS)}."
            )
        self.working_point = wp
        self._cuts = ELECTRON_ID_CUTS[wp]
        logger.debug("Electron ID working point set to %s", wp)

    # --- Conditioning ----------------------------------------------------------

    def set_rho(self, rho):
        self._rho = ak.Array(rho)

    def set_beamspot(self, beamspot):
        self._beamspot = beamspot

    def set_conversions(self, conversions):
        self._conversions = conversions

    def set_event_conditions(self, events):
        """Refresh rho, beamspot and conversions from an events chunk."""
        self.set_rho(events.Rho.fixedGridRhoFastjetAll)
        self.set_beamspot(events.BeamSpot)
        self.set_conversions(events.Conversion)

    def clear(self):
        self._rho = None
        self._beamspot = None
        self._conversions = None

    def _check_conditions(self, electrons):
        missing = [
            name
            for name, value in (("rho", self._rho), ("beamspot", self._beamspot), ("conversions", self._conversions))
            if value is None
        ]
        if missing:
            raise RuntimeError(f"Electron ID evaluated without conditioning: missing {', '.join(missing)}")
        n_events = len(electrons)
        for name, value in (("rho", self._rho), ("beamspot", self._beamspot), ("conversions", self._conversions)):
            if len(value) != n_events:
                raise RuntimeError(
                    f"Electron ID conditioning '{name}' has {len(value)} events, electrons have {n_events}"
                )

    # --- Evaluation ------------------------------------------------------------

    def _cut(self, barrel, key, index=None):
        b = self._cuts["barrel"][key]
        e = self._cuts["endcap"][key]
        if index is not None:
            b, e = b[index], e[index]
        return ak.where(barrel, b, e)

    def has_matched_conversion(self, electrons):
        """True for electrons referenced by a displaced, well-fitted conversion."""
        conversions = self._conversions
        lxy = conversion_lxy(conversions, self._beamspot)
        good = conversions[(conversions.vtxProb > CONVERSION_MIN_VTX_PROB) & (lxy > CONVERSION_MIN_LXY)]
        pairs = ak.cartesian(
            {"ele": ak.local_index(electrons.pt, axis=1), "conv": good.eleIdx},
            axis=1,
            nested=True,
        )
        return ak.any(pairs.conv == pairs.ele, axis=2)

    def relative_isolation(self, electrons):
        abs_sc_eta = np.abs(electrons.scEta)
        neutral = electrons.pfIso03_nh + electrons.pfIso03_ph - self._rho * effective_area(abs_sc_eta)
        return (electrons.pfIso03_ch + np.maximum(0.0, neutral)) / electrons.pt

    def pass_id(self, electrons):
        """Jagged boolean mask: which electrons pass the configured working point."""
        self._check_conditions(electrons)

        barrel = np.abs(electrons.scEta) <= BARREL_MAX_SC_ETA
        energy = electrons.scEnergy
        hoe_cut = (
            self._cut(barrel, "hoe", 0)
            + self._cut(barrel, "hoe", 1) / energy
            + self._cut(barrel, "hoe", 2) * self._rho / energy
        )
        iso_cut = self._cut(barrel, "rel_iso", 0) + self._cut(barrel, "rel_iso", 1) / electrons.pt

        passes = (
            (electrons.sieie < self._cut(barrel, "sieie"))
            & (np.abs(electrons.dEtaSeed) < self._cut(barrel, "dEtaSeed"))
            & (np.abs(electrons.dPhiIn) < self._cut(barrel, "dPhiIn"))
            & (electrons.hoe < hoe_cut)
            & (self.relative_isolation(electrons) < iso_cut)
            & (np.abs(electrons.eInvMinusPInv) < self._cut(barrel, "eInvMinusPInv"))
            & (electrons.lostHits <= self._cut(barrel, "lost_hits"))
            & ~self.has_matched_conversion(electrons)
        )
        return ak.fill_none(passes, False)
