"""Tests for zcounting.selections: muon ID/isolation strategies and track quality."""

import awkward as ak
import numpy as np
import pytest

from zcounting.analysis_config import build_cuts
from zcounting.selections import (
    good_track, impact_parameters, in_crack, is_central,
    muon_id_selector, muon_iso_selector,
)

from mock_events import muons, tracks, vertices


@pytest.fixture
def pv():
    return ak.firsts(vertices([{}]))


class TestMuonId:
    def test_invalid_label(self):
        with pytest.raises(ValueError, match="Invalid muon ID"):
            muon_id_selector("Soft")

    def test_none_passes_everything(self, pv):
        mu = muons([{"isGlobal": False, "looseId": False, "mediumId": False}])
        assert ak.to_list(muon_id_selector("None")(mu, pv)) == [[True]]

    def test_loose_and_medium_flags(self, pv):
        mu = muons([{"looseId": True, "mediumId": False}, {"looseId": False, "mediumId": True}])
        assert ak.to_list(muon_id_selector("Loose")(mu, pv)) == [[True, False]]
        assert ak.to_list(muon_id_selector("Medium")(mu, pv)) == [[False, True]]

    def test_tight_default_muon_passes(self, pv):
        assert ak.to_list(muon_id_selector("Tight")(muons([{}]), pv)) == [[True]]

    @pytest.mark.parametrize("bad", [
        {"isGlobal": False},
        {"isPFcand": False},
        {"globalNormChi2": 10.0},
        {"nValidMuonHits": 0},
        {"nStations": 1},
        {"nValidPixelHits": 0},
        {"nTrackerLayers": 5},
        {"vz": 0.6},
    ])
    def test_tight_rejects(self, pv, bad):
        assert ak.to_list(muon_id_selector("Tight")(muons([bad]), pv)) == [[False]]

    def test_tight_transverse_impact(self, pv):
        # Displaced perpendicular to the momentum (phi = 0 -> along x).
        mu = muons([{"vy": 0.3}, {"vy": 0.1}])
        assert ak.to_list(muon_id_selector("Tight")(mu, pv)) == [[False, True]]

    def test_impact_parameters_along_momentum_vanish(self, pv):
        mu = muons([{"vx": 0.3, "phi": 0.0, "eta": 0.0}])
        dxy, dz = impact_parameters(mu, pv)
        assert ak.to_list(dxy)[0][0] == pytest.approx(0.0)
        assert ak.to_list(dz)[0][0] == pytest.approx(0.0)


class TestMuonIso:
    def test_invalid_label(self):
        with pytest.raises(ValueError, match="Invalid muon isolation"):
            muon_iso_selector("Mini", 0.1)

    def test_none(self):
        assert ak.to_list(muon_iso_selector("None", 0.0)(muons([{"isoR03_sumPt": 99.0}]))) == [[True]]

    def test_tracker_iso_strict(self):
        mu = muons([{"isoR03_sumPt": 2.9}, {"isoR03_sumPt": 3.0}])
        assert ak.to_list(muon_iso_selector("Tracker-based", 3.0)(mu)) == [[True, False]]

    def test_pf_iso_delta_beta(self):
        mu = muons([
            # neutral part clipped at zero: 1 + max(0, 1 + 1 - 0.5 * 10) = 1
            {"pfIsoR04_sumChargedHadronPt": 1.0, "pfIsoR04_sumNeutralHadronEt": 1.0,
             "pfIsoR04_sumPhotonEt": 1.0, "pfIsoR04_sumPUPt": 10.0},
            # 1 + (2 + 2 - 0.5 * 2) = 4
            {"pfIsoR04_sumChargedHadronPt": 1.0, "pfIsoR04_sumNeutralHadronEt": 2.0,
             "pfIsoR04_sumPhotonEt": 2.0, "pfIsoR04_sumPUPt": 2.0},
        ])
        assert ak.to_list(muon_iso_selector("PF-based", 2.0)(mu)) == [[True, False]]


class TestTrackAndRegion:
    def test_good_track_thresholds(self):
        trk = tracks([
            {"nTrackerLayers": 6, "nValidPixelHits": 1},
            {"nTrackerLayers": 5, "nValidPixelHits": 1},
            {"nTrackerLayers": 6, "nValidPixelHits": 0},
        ])
        assert ak.to_list(good_track(trk)) == [[True, False, False]]

    def test_is_central_boundary(self):
        assert is_central(np.array([0.0, -0.89, 0.9, 1.5])).tolist() == [True, True, False, False]

    def test_in_crack_is_open_band(self):
        cuts = build_cuts()
        abs_eta = np.array([1.4442, 1.5, 1.566, 1.0])
        assert in_crack(abs_eta, cuts).tolist() == [False, True, False, False]
