"""Trigger-menu resolution and offline-to-online trigger matching.

A ``TriggerGate`` owns the configured logical triggers (``TriggerRecord``) and
maps them onto the live trigger menu. Resolution is cached per menu identifier:
it is only redone when a chunk arrives with a different menu.

Two kinds of queries are answered:
    - path level: did the event pass the path behind a logical trigger
      (``trigger_bits`` + ``passes``, or ``event_passes``);
    - object level: is an offline object within ``TRIGGER_MATCH_DR`` of a
      trigger object firing the record's filter (``match_objects`` +
      ``passes_object``, or ``object_matches``).

Both queries return plain booleans; unresolved records never pass.
"""

import fnmatch
import logging
from dataclasses import dataclass, replace
from typing import Optional

import awkward as ak
import numpy as np
from coffea.nanoevents.methods import vector

from zcounting.analysis_config import TRIGGER_MATCH_DR, TRIGGER_RECORDS

logger = logging.getLogger(__name__)

_HLT_PREFIX = "HLT_"
_UNSET = object()


@dataclass(frozen=True)
class TriggerRecord:
    """One logical trigger requirement and its resolution in the current menu."""

    pattern: str
    filter_label: str
    object_id: int
    filter_bit: int
    bit: int
    path_name: str = ""
    path_index: Optional[int] = None

    @property
    def resolved(self) -> bool:
        return self.path_index is not None


def is_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in "*?[")


def trigger_menu(hlt) -> list[str]:
    """Ordered path names of the menu behind an ``HLT`` record array.

    NanoAOD strips the ``HLT_`` prefix from branch names; it is restored here so
    configured patterns use the full path names.
    """
    return [f"{_HLT_PREFIX}{field}" for field in hlt.fields]


def _hlt_field(path_name: str) -> str:
    if path_name.startswith(_HLT_PREFIX):
        return path_name[len(_HLT_PREFIX):]
    return path_name


def _directions(objs):
    """Unit-pt massless vectors carrying only (eta, phi), for dR matching."""
    return ak.zip(
        {
            "pt": ak.ones_like(objs.eta),
            "eta": objs.eta,
            "phi": objs.phi,
            "mass": ak.zeros_like(objs.eta),
        },
        with_name="PtEtaPhiMLorentzVector",
        behavior=vector.behavior,
    )


class TriggerGate:
    def __init__(self, records=TRIGGER_RECORDS):
        self._records = [
            TriggerRecord(pattern, label, int(obj_id), int(filter_bit), bit)
            for bit, (pattern, label, obj_id, filter_bit) in enumerate(records)
        ]
        self._menu_id = _UNSET
        self._path_names: list[str] = []

    @property
    def records(self) -> list[TriggerRecord]:
        return list(self._records)

    def record(self, name: str, filter_label: Optional[str] = None) -> Optional[TriggerRecord]:
        for rec in self._records:
            if rec.pattern != name:
                continue
            if filter_label is not None and rec.filter_label != filter_label:
                continue
            return rec
        return None

    def resolve(self, menu_id, path_names) -> bool:
        """Map every record onto ``path_names``; no-op when ``menu_id`` is unchanged.

        Returns True when the mapping was rebuilt.
        """
        if self._menu_id is not _UNSET and menu_id == self._menu_id:
            return False

        path_names = list(path_names)
        index_of = {name: i for i, name in enumerate(path_names)}
        resolved = []
        for rec in self._records:
            if is_glob(rec.pattern):
                matches = [name for name in path_names if fnmatch.fnmatchcase(name, rec.pattern)]
                # Last match wins.
                path_name = matches[-1] if matches else ""
            else:
                path_name = rec.pattern

            path_index = index_of.get(path_name)
            if path_index is None:
                logger.warning(
                    "Requested trigger pattern [%s] does not match any HLT path in menu %r.",
                    rec.pattern,
                    menu_id,
                )
            else:
                logger.info("Trigger pattern [%s] resolved to %s (index %d).", rec.pattern, path_name, path_index)
            resolved.append(replace(rec, path_name=path_name, path_index=path_index))

        self._records = resolved
        self._path_names = path_names
        self._menu_id = menu_id
        return True

    # --- Path level ------------------------------------------------------------

    def trigger_bits(self, hlt) -> np.ndarray:
        """Per-event bitset with ``1 << record.bit`` set where the record's path accepted."""
        bits = np.zeros(len(hlt), dtype=np.int64)
        fields = set(hlt.fields)
        for rec in self._records:
            if not rec.resolved:
                continue
            field = _hlt_field(rec.path_name)
            # A reused menu id can hide a changed branch set; absent paths never accept.
            if field not in fields:
                logger.debug("HLT path %s absent from this chunk; treated as not accepted.", rec.path_name)
                continue
            accept = ak.to_numpy(ak.fill_none(hlt[field], False)).astype(bool)
            bits |= np.where(accept, np.int64(1) << rec.bit, np.int64(0))
        return bits

    def passes(self, bits, name: str) -> np.ndarray:
        rec = self.record(name)
        bits = np.asarray(bits)
        if rec is None or not rec.resolved:
            return np.zeros(len(bits), dtype=bool)
        return (bits & (np.int64(1) << rec.bit)) != 0

    def event_passes(self, hlt, name: str) -> np.ndarray:
        return self.passes(self.trigger_bits(hlt), name)

    # --- Object level ----------------------------------------------------------

    def match_objects(self, trigobjs, leptons):
        """Per-lepton bitset of the records whose filter objects lie within dR of the lepton.

        ``trigobjs`` and ``leptons`` are jagged collections of the same events,
        each with ``eta`` and ``phi``; ``trigobjs`` also carries ``id`` and
        ``filterBits``.
        """
        bits = ak.zeros_like(leptons.eta, dtype=np.int64)
        lepton_dirs = _directions(leptons)
        for rec in self._records:
            if not rec.resolved:
                continue
            fired = (trigobjs.id == rec.object_id) & (((trigobjs.filterBits >> rec.filter_bit) & 1) == 1)
            pairs = ak.cartesian(
                {"lep": lepton_dirs, "obj": _directions(trigobjs[fired])},
                axis=1,
                nested=True,
            )
            matched = ak.any(pairs.lep.delta_r(pairs.obj) < TRIGGER_MATCH_DR, axis=2)
            bits = bits | ak.where(matched, 1 << rec.bit, 0)
        return bits

    def passes_object(self, match_bits, name: str, filter_label: str):
        rec = self.record(name, filter_label)
        if rec is None or not rec.resolved:
            return ak.zeros_like(match_bits, dtype=bool)
        return (match_bits & (1 << rec.bit)) != 0

    def object_matches(self, trigobjs, name: str, filter_label: str, leptons):
        return self.passes_object(self.match_objects(trigobjs, leptons), name, filter_label)
