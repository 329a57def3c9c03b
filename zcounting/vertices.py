"""Primary-vertex quality selection."""

import awkward as ak
import numpy as np


def good_vertex_mask(vertices, cuts):
    """Per-vertex mask: not fake, enough fit tracks and ndof, inside the luminous region."""
    rho = np.hypot(vertices.x, vertices.y)
    return (
        (~ak.values_astype(vertices.isFake, bool))
        & (vertices.nTracks >= cuts["vtx_ntracks_min"])
        & (vertices.ndof >= cuts["vtx_ndof_min"])
        & (np.abs(vertices.z) <= cuts["vtx_abs_z_max"])
        & (rho <= cuts["vtx_rho_max"])
    )


def select_good_vertices(vertices, cuts):
    """Count qualifying vertices and pick the primary one.

    Returns ``(good, nvtx, pv)``: the per-vertex mask, the per-event count of
    qualifying vertices, and the first qualifying vertex in input order (None
    for events without one).
    """
    good = good_vertex_mask(vertices, cuts)
    nvtx = ak.sum(good, axis=1)
    pv = ak.firsts(vertices[good])
    return good, nvtx, pv
