"""Tests for zcounting.save_hists: histogram summing and ROOT I/O."""

import hist
import numpy as np
import pytest
import uproot

from zcounting.analysis_config import COUNTERS, H_YIELD_Z, MUON_MASS_HISTS
from zcounting.histograms import add_counter, make_output
from zcounting.save_hists import HISTOGRAM_FOLDER, save_histograms, sum_counters, sum_hists


def _dataset_payload(n_fill=1, lumi=1.0):
    output = make_output()
    for _ in range(n_fill):
        output["h_mass_HLT_pass_central"].fill(lumi=[lumi], mass=[91.0])
        output[H_YIELD_Z].fill(lumi=[lumi])
    add_counter(output, "n_events", 10 * n_fill)
    return output


class TestSumHists:
    def test_single_dataset(self):
        summed = sum_hists({"ds1": _dataset_payload(2)})
        assert summed["h_mass_HLT_pass_central"].sum().value == 2.0

    def test_multiple_datasets_sum_correctly(self):
        summed = sum_hists({"ds1": _dataset_payload(2), "ds2": _dataset_payload(3, lumi=5.0)})
        assert summed["h_mass_HLT_pass_central"].sum().value == 5.0
        assert summed[H_YIELD_Z][hist.loc(5.0)].value == 3.0

    def test_inputs_not_mutated(self):
        first = _dataset_payload(1)
        sum_hists({"ds1": first, "ds2": _dataset_payload(1)})
        assert first["h_mass_HLT_pass_central"].sum().value == 1.0

    def test_empty_histograms_raises(self):
        with pytest.raises(ValueError, match="No histogram data"):
            sum_hists({})

    def test_non_hist_values_skipped(self):
        summed = sum_hists({"ds1": _dataset_payload(1)})
        assert "counters" not in summed


class TestSumCounters:
    def test_counters_added(self):
        totals = sum_counters({"ds1": _dataset_payload(1), "ds2": _dataset_payload(2)})
        assert totals["n_events"] == 30
        assert set(COUNTERS) <= set(totals)

    def test_missing_counters_tolerated(self):
        assert sum_counters({"ds1": {}})["n_events"] == 0


class TestSaveHistogramsIntegration:
    def test_creates_root_file(self, tmp_path):
        out = tmp_path / "sub" / "ZCounting.root"
        counters = save_histograms({"ds1": _dataset_payload(2)}, out)
        assert out.exists()
        assert counters["n_events"] == 20

    def test_root_file_contents(self, tmp_path):
        out = tmp_path / "ZCounting.root"
        save_histograms({"ds1": _dataset_payload(2), "ds2": _dataset_payload(1)}, out)

        with uproot.open(out) as f:
            for name in MUON_MASS_HISTS + [H_YIELD_Z, "h_npv", "h_ee_mass_id_pass"]:
                assert f"{HISTOGRAM_FOLDER}/{name}" in f
            h = f[f"{HISTOGRAM_FOLDER}/h_mass_HLT_pass_central"]
            assert np.sum(h.values()) == pytest.approx(3.0)
            y = f[f"{HISTOGRAM_FOLDER}/{H_YIELD_Z}"]
            assert np.sum(y.values()) == pytest.approx(3.0)
