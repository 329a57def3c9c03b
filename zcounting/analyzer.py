"""Z-counting Coffea processor.

This module implements the Coffea `ProcessorABC` that fills the per-lumi-block
Z -> mu mu and Z -> e e tag-and-probe histograms.

High-level flow per chunk:
    1) Count good primary vertices, fill ``h_npv`` for every event, then drop
       events without a good vertex.
    2) Resolve the trigger menu (only when its identifier changed) and build
       the per-event trigger bitset.
    3) Muon channel on events accepting the muon path.
    4) Electron channel on events accepting the electron path.

Output conventions:
    - Histogram key == ROOT stem (see `zcounting.histograms`).
    - ``output["counters"]`` holds integer diagnostics merged by addition.

Notes for distributed execution (Dask):
    - the trigger resolution cache lives on the processor instance, i.e. one
      copy per worker process;
    - missing input collections are expected in some files; they are logged once
      per worker process via `_WARN_ONCE` and the affected channel is skipped.
"""

import logging

from coffea import processor
import numpy as np

from zcounting.analysis_config import (
    ELECTRON_TRIGGER, MUON_TRIGGER, TRIGGER_RECORDS,
    build_binning, build_cuts,
)
from zcounting.electron_id import ElectronIdentifier
from zcounting.electrons import analyze_electrons
from zcounting.histograms import add_counter, fill_npv, make_output
from zcounting.muons import analyze_muons
from zcounting.selections import muon_id_selector, muon_iso_selector
from zcounting.trigger import TriggerGate, trigger_menu
from zcounting.vertices import select_good_vertices

logger = logging.getLogger(__name__)

# Warn-once cache (per worker process) to avoid log spam.
_WARN_ONCE: set[str] = set()

MUON_COLLECTIONS = ("Muon", "Track", "TrigObj")
ELECTRON_COLLECTIONS = ("Electron", "SuperCluster", "TrigObj", "Rho", "BeamSpot", "Conversion")


def _missing(events, names):
    fields = set(getattr(events, "fields", []))
    return [name for name in names if name not in fields]


def _log_skip(channel, missing):
    key = f"{channel}:{','.join(missing)}"
    if key not in _WARN_ONCE:
        _WARN_ONCE.add(key)
        logger.info("Skipping %s channel: missing %s", channel, ", ".join(missing))


class ZCounting(processor.ProcessorABC):
    """Tag-and-probe Z counting per luminosity block.

    Expected `events.metadata` keys:
      - `dataset`: dataset name (set by the coffea runner)
      - `trigger_menu_id` (optional): identifier of the HLT menu; when absent the
        ordered tuple of HLT path names is used instead.

    Parameters
    - `cuts`: overrides of `analysis_config.CUTS`.
    - `binning`: overrides of `analysis_config.BINNING`.
    - `muon_id`: one of None, Loose, Medium, Tight.
    - `muon_iso`: one of None, Tracker-based, PF-based (cut: `muon_iso_cut`).
    - `electron_id`: electron working point (VETO, LOOSE, MEDIUM, TIGHT).
    - `trigger_records`: (pattern, filter label, object id, filter bit) tuples.
    """
    def __init__(self, cuts=None, binning=None, muon_id="Tight", muon_iso="None",
                 electron_id="TIGHT", trigger_records=None):
        self._cuts = build_cuts(cuts)
        self._binning = build_binning(binning)
        self._muon_id = muon_id_selector(muon_id)
        self._muon_iso = muon_iso_selector(muon_iso, self._cuts["muon_iso_cut"])
        self._electron_id = ElectronIdentifier(electron_id)
        self._trigger = TriggerGate(TRIGGER_RECORDS if trigger_records is None else trigger_records)

    @property
    def cuts(self):
        return dict(self._cuts)

    @property
    def trigger_gate(self):
        return self._trigger

    def make_output(self):
        return make_output(self._binning)

    def update_trigger_menu(self, events):
        """Resolve trigger records against this chunk's menu; returns the HLT record."""
        hlt = events.HLT
        path_names = trigger_menu(hlt)
        menu_id = events.metadata.get("trigger_menu_id") or tuple(path_names)
        self._trigger.resolve(menu_id, path_names)
        return hlt

    def run_muons(self, output, events, mask, pv):
        missing = _missing(events, MUON_COLLECTIONS)
        if missing:
            _log_skip("muon", missing)
            return
        analyze_muons(
            output,
            events.luminosityBlock[mask],
            events.Muon[mask],
            events.Track[mask],
            pv[mask],
            events.TrigObj[mask],
            self._trigger,
            self._muon_id,
            self._muon_iso,
            self._cuts,
        )

    def run_electrons(self, output, events, mask):
        missing = _missing(events, ELECTRON_COLLECTIONS)
        if missing:
            _log_skip("electron", missing)
            return
        eid = self._electron_id
        eid.set_rho(events.Rho.fixedGridRhoFastjetAll[mask])
        eid.set_beamspot(events.BeamSpot[mask])
        eid.set_conversions(events.Conversion[mask])
        try:
            analyze_electrons(
                output,
                events.luminosityBlock[mask],
                events.Electron[mask],
                events.SuperCluster[mask],
                events.TrigObj[mask],
                self._trigger,
                eid,
                self._cuts,
            )
        finally:
            eid.clear()

    def process(self, events):
        """Run both channels for one NanoEvents chunk and return a dataset-nested output dict."""
        output = self.make_output()
        dataset = events.metadata.get("dataset", "unknown")
        nested_output = {dataset: output}

        add_counter(output, "n_events", len(events))

        missing = _missing(events, ("Vertex",))
        if missing:
            _log_skip("all", missing)
            return nested_output

        _good, nvtx, pv = select_good_vertices(events.Vertex, self._cuts)
        fill_npv(output, events.luminosityBlock, nvtx)
        has_vertex = np.asarray(nvtx) > 0
        add_counter(output, "n_events_good_vertex", np.sum(has_vertex))
        if not np.any(has_vertex):
            return nested_output

        missing = _missing(events, ("HLT",))
        if missing:
            _log_skip("all", missing)
            return nested_output

        hlt = self.update_trigger_menu(events)
        bits = self._trigger.trigger_bits(hlt)

        muon_events = has_vertex & self._trigger.passes(bits, MUON_TRIGGER)
        electron_events = has_vertex & self._trigger.passes(bits, ELECTRON_TRIGGER)
        add_counter(output, "n_events_muon_trigger", np.sum(muon_events))
        add_counter(output, "n_events_electron_trigger", np.sum(electron_events))

        if np.any(muon_events):
            self.run_muons(output, events, muon_events, pv)
        if np.any(electron_events):
            self.run_electrons(output, events, electron_events)

        return nested_output

    def postprocess(self, accumulator):
        return accumulator
