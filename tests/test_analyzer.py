"""Unit tests for the ZCounting processor.

These tests drive ``ZCounting.process`` with lightweight mock event chunks
(see ``mock_events``) instead of real NanoAOD files.
"""

import logging
import math

import numpy as np
import pytest

from zcounting import analyzer
from zcounting.analysis_config import H_EE_YIELD_Z, H_NPV, H_YIELD_Z, MUON_MASS_HISTS
from zcounting.analyzer import ZCounting

from mock_events import (
    ELECTRON_PATH, electrons, make_events, make_record, muons, superclusters,
    trigobjs, vertices,
)

TAG = {"pt": 45.0, "eta": 0.5, "phi": 0.0, "charge": 1}
PROBE = {"pt": 45.0, "eta": -0.3, "phi": math.pi, "charge": -1}
MUON_OBJS = [
    {"eta": TAG["eta"], "phi": TAG["phi"]},
    {"eta": PROBE["eta"], "phi": PROBE["phi"]},
]

ELE_TAG = {"pt": 45.0, "eta": 0.0, "phi": 0.0, "charge": -1, "scIdx": 0}
ELE_PROBE = {"pt": 38.0, "eta": 0.0, "phi": math.pi, "charge": 1, "scIdx": 1, "scEnergy": 38.0}
ELE_SCS = [{"energy": 45.0, "eta": 0.0, "phi": 0.0}, {"energy": 38.0, "eta": 0.0, "phi": math.pi}]
ELE_OBJS = [
    {"eta": 0.0, "phi": 0.0, "id": 11},
    {"eta": 0.0, "phi": math.pi, "id": 11},
]


@pytest.fixture(autouse=True)
def _reset_warn_once(monkeypatch):
    monkeypatch.setattr(analyzer, "_WARN_ONCE", set())


def _muon_events(**kwargs):
    return make_events(1, Muon=muons([TAG, PROBE]), TrigObj=trigobjs(MUON_OBJS), **kwargs)


def _electron_events(**kwargs):
    return make_events(
        1,
        Electron=electrons([ELE_TAG, ELE_PROBE]),
        SuperCluster=superclusters(ELE_SCS),
        TrigObj=trigobjs(ELE_OBJS),
        **kwargs,
    )


def _muon_total(output):
    return sum(output[name].sum().value for name in MUON_MASS_HISTS)


class TestConstruction:
    def test_defaults(self):
        proc = ZCounting()
        assert proc.cuts["mass_min"] == 66.0
        assert [rec.pattern for rec in proc.trigger_gate.records] == [
            "HLT_IsoMu27_v*", "HLT_Ele35_WPTight_Gsf_v*",
        ]

    @pytest.mark.parametrize("kwargs, message", [
        ({"cuts": {"bogus": 1.0}}, "Unknown cut"),
        ({"binning": {"mass": (0, 60, 120)}}, "Bin count"),
        ({"muon_id": "Ultra"}, "Invalid muon ID type"),
        ({"muon_iso": "Calo"}, "Invalid muon isolation type"),
        ({"electron_id": "SUPER"}, "Invalid electron ID working point"),
    ])
    def test_bad_configuration_raises(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            ZCounting(**kwargs)

    def test_cuts_property_is_a_copy(self):
        proc = ZCounting()
        proc.cuts["mass_min"] = 0.0
        assert proc.cuts["mass_min"] == 66.0


class TestOutputShape:
    def test_nested_by_dataset(self):
        result = ZCounting().process(make_events(2))
        assert list(result) == ["ZeroBias"]
        output = result["ZeroBias"]
        assert H_YIELD_Z in output
        assert output["counters"]["n_events"] == 2

    def test_dataset_from_metadata(self):
        result = ZCounting().process(make_events(1, metadata={"dataset": "ZeroBias_RunB"}))
        assert list(result) == ["ZeroBias_RunB"]

    def test_postprocess_passthrough(self):
        acc = {"x": 1}
        assert ZCounting().postprocess(acc) is acc


class TestVertices:
    def test_events_without_good_vertex_only_fill_npv(self):
        events = _muon_events(Vertex=vertices([]))
        output = ZCounting().process(events)["ZeroBias"]
        assert output[H_NPV].sum(flow=True).value == 1.0
        assert output["counters"]["n_events_good_vertex"] == 0
        assert output["counters"]["n_events_muon_trigger"] == 0
        assert _muon_total(output) == 0.0

    def test_npv_counts_good_vertices(self):
        events = make_events(1, Vertex=vertices([{}, {}, {"isFake": True}]))
        output = ZCounting().process(events)["ZeroBias"]
        h = output[H_NPV]
        assert h[{"lumi": 1j, "npv": 2j}].value == 1.0

    def test_missing_vertex_collection_skips_chunk(self, caplog):
        with caplog.at_level(logging.INFO, logger="zcounting.analyzer"):
            output = ZCounting().process(_muon_events(drop=("Vertex",)))["ZeroBias"]
        assert output["counters"]["n_events"] == 1
        assert output[H_NPV].sum(flow=True).value == 0.0
        assert "missing Vertex" in caplog.text


class TestMuonChannel:
    def test_end_to_end_2hlt(self):
        output = ZCounting().process(_muon_events())["ZeroBias"]
        assert output[H_YIELD_Z].sum().value == 1.0
        assert output["h_mass_HLT_pass_central"].sum().value == 2.0
        assert output["counters"]["n_events_muon_trigger"] == 1
        assert output["counters"]["n_muon_tags"] == 2

    def test_muon_path_not_accepted(self):
        output = ZCounting().process(_muon_events(muon_accept=[False]))["ZeroBias"]
        assert output["counters"]["n_events_muon_trigger"] == 0
        assert _muon_total(output) == 0.0
        assert output[H_YIELD_Z].sum().value == 0.0

    def test_only_accepting_events_analyzed(self):
        events = make_events(
            2,
            muon_accept=[False, True],
            Muon=muons([TAG, PROBE], [TAG, PROBE]),
            TrigObj=trigobjs(MUON_OBJS, MUON_OBJS),
            Vertex=vertices([{}], [{}]),
        )
        output = ZCounting().process(events)["ZeroBias"]
        assert output[H_YIELD_Z].sum().value == 1.0
        assert output[H_YIELD_Z][2j].value == 1.0

    def test_missing_track_skips_muon_channel_only(self, caplog):
        events = make_events(
            1,
            drop=("Track",),
            Muon=muons([TAG, PROBE]),
            Electron=electrons([ELE_TAG, ELE_PROBE]),
            SuperCluster=superclusters(ELE_SCS),
            TrigObj=trigobjs(MUON_OBJS + ELE_OBJS),
        )
        proc = ZCounting()
        with caplog.at_level(logging.INFO, logger="zcounting.analyzer"):
            output = proc.process(events)["ZeroBias"]
            proc.process(events)
        assert _muon_total(output) == 0.0
        assert output[H_EE_YIELD_Z].sum().value == 1.0
        assert caplog.text.count("Skipping muon channel") == 1


class TestElectronChannel:
    def test_end_to_end(self):
        output = ZCounting().process(_electron_events())["ZeroBias"]
        assert output[H_EE_YIELD_Z].sum().value == 1.0
        assert output["h_ee_mass_id_pass"].sum().value == 1.0
        assert output["h_ee_mass_HLT_pass"].sum().value == 1.0
        assert output["counters"]["n_events_electron_trigger"] == 1

    def test_electron_path_not_accepted(self):
        output = ZCounting().process(_electron_events(electron_accept=[False]))["ZeroBias"]
        assert output[H_EE_YIELD_Z].sum().value == 0.0
        assert output["counters"]["n_ele_tags"] == 0

    def test_conditioning_cleared_after_chunk(self):
        proc = ZCounting()
        proc.process(_electron_events())
        with pytest.raises(RuntimeError, match="without conditioning"):
            proc._electron_id.pass_id(electrons([ELE_TAG]))


class TestTriggerMenu:
    def test_menu_resolved_once_per_identifier(self):
        proc = ZCounting()
        proc.process(_muon_events(metadata={"trigger_menu_id": "menu-A"}))
        assert proc.trigger_gate.resolve("menu-A", []) is False
        assert proc.trigger_gate.record("HLT_IsoMu27_v*").path_name == "HLT_IsoMu27_v12"

    def test_new_menu_re_resolves(self):
        proc = ZCounting()
        proc.process(_muon_events(metadata={"trigger_menu_id": "menu-A"}))

        no_muon_path = make_record({ELECTRON_PATH: [True]}, dtype=np.bool_)
        output = proc.process(
            _muon_events(metadata={"trigger_menu_id": "menu-B"}, HLT=no_muon_path)
        )["ZeroBias"]
        assert not proc.trigger_gate.record("HLT_IsoMu27_v*").resolved
        assert output["counters"]["n_events_muon_trigger"] == 0
        assert output[H_YIELD_Z].sum().value == 0.0

    def test_reused_menu_id_with_changed_paths(self):
        proc = ZCounting()
        proc.process(_muon_events(metadata={"trigger_menu_id": "menu-A"}))

        no_muon_path = make_record({ELECTRON_PATH: [True]}, dtype=np.bool_)
        output = proc.process(
            _muon_events(metadata={"trigger_menu_id": "menu-A"}, HLT=no_muon_path)
        )["ZeroBias"]
        assert proc.trigger_gate.record("HLT_IsoMu27_v*").resolved
        assert output["counters"]["n_events_muon_trigger"] == 0
        assert output["counters"]["n_events_electron_trigger"] == 1
        assert output[H_YIELD_Z].sum().value == 0.0

    def test_menu_identifier_defaults_to_path_names(self):
        proc = ZCounting()
        proc.process(_muon_events())
        assert proc.trigger_gate.resolve(("HLT_IsoMu27_v12", "HLT_Ele35_WPTight_Gsf_v7"), []) is False
