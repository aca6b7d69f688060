from dataclasses import dataclass
from typing import Optional

import numpy as np

from admmpd.errors import AssemblyError
from admmpd.math.graph_tools import boundary_faces
from admmpd.math.math_tools import barycentric, tet_volumes

# Six tets per grid cell sharing the cell's main diagonal; translated copies
# of this split conform across cell faces. Corner c = i + 2 * j + 4 * k.
CELL_TETS = np.array([[0, 1, 3, 7],
                      [0, 1, 7, 5],
                      [0, 2, 7, 3],
                      [0, 2, 6, 7],
                      [0, 4, 5, 7],
                      [0, 4, 7, 6]], dtype=np.int32)


def _check_indices(name, array, width, n_vertices):
    if array.ndim != 2 or array.shape[1] != width:
        raise AssemblyError(f'{name} must be an (m, {width}) index array, got shape {array.shape}')
    if array.size and (array.min() < 0 or array.max() >= n_vertices):
        raise AssemblyError(f'{name} references a vertex outside [0, {n_vertices})')


@dataclass
class TetMeshData:
    """Rest geometry of a plain tet mesh."""

    x_rest: np.ndarray  # verts at rest, n x 3
    tets: np.ndarray  # internal elements, t x 4
    faces: Optional[np.ndarray] = None  # surface elements, m x 3

    def __post_init__(self):
        self.x_rest = np.asarray(self.x_rest, dtype=np.float64)
        self.tets = np.asarray(self.tets, dtype=np.int32).reshape((-1, 4))
        if self.faces is None:
            self.faces = boundary_faces(self.tets)
        self.faces = np.asarray(self.faces, dtype=np.int32).reshape((-1, 3))

    def check(self):
        if self.x_rest.ndim != 2 or self.x_rest.shape[1] != 3:
            raise AssemblyError(f'x_rest must be (n, 3), got shape {self.x_rest.shape}')
        if not np.all(np.isfinite(self.x_rest)):
            raise AssemblyError('x_rest contains non-finite coordinates')
        if len(self.tets) == 0:
            raise AssemblyError('mesh has no tets')
        n = len(self.x_rest)
        _check_indices('tets', self.tets, 4, n)
        _check_indices('faces', self.faces, 3, n)
        return self

    def rest_positions(self):
        return self.x_rest

    def elements(self):
        return self.tets

    def embedded_positions(self, x):
        return x


@dataclass
class EmbeddedMeshData:
    """
    A fine mesh carried by a coarse tet lattice. Embedded vertex i lives in
    lattice tet ``vtx_to_tet[i]`` with weights ``barys[i]``.
    """

    x_rest: np.ndarray  # embedded verts at rest, p x 3
    faces: np.ndarray  # embedded faces
    tets: np.ndarray  # lattice elements, t x 4
    vtx_to_tet: np.ndarray  # containing lattice tet per embedded vert, p
    barys: np.ndarray  # barycoords of the embedding, p x 4
    lattice_x: np.ndarray  # lattice verts at rest, n x 3

    # barycentric weights are accepted down to -BARY_TOLERANCE so that
    # vertices lying on a lattice face survive round-off
    BARY_TOLERANCE = 1e-6

    def __post_init__(self):
        self.x_rest = np.asarray(self.x_rest, dtype=np.float64)
        self.faces = np.asarray(self.faces, dtype=np.int32).reshape((-1, 3))
        self.tets = np.asarray(self.tets, dtype=np.int32).reshape((-1, 4))
        self.vtx_to_tet = np.asarray(self.vtx_to_tet, dtype=np.int32).reshape(-1)
        self.barys = np.asarray(self.barys, dtype=np.float64)
        self.lattice_x = np.asarray(self.lattice_x, dtype=np.float64)

    def check(self):
        if self.lattice_x.ndim != 2 or self.lattice_x.shape[1] != 3:
            raise AssemblyError(f'lattice_x must be (n, 3), got shape {self.lattice_x.shape}')
        if len(self.tets) == 0:
            raise AssemblyError('lattice has no tets')
        _check_indices('tets', self.tets, 4, len(self.lattice_x))
        p = len(self.x_rest)
        _check_indices('faces', self.faces, 3, p)
        if self.vtx_to_tet.shape != (p,) or self.barys.shape != (p, 4):
            raise AssemblyError('vtx_to_tet and barys need one entry per embedded vertex')
        if p and (self.vtx_to_tet.min() < 0 or self.vtx_to_tet.max() >= len(self.tets)):
            raise AssemblyError('vtx_to_tet references a tet outside the lattice')
        if np.any(np.abs(self.barys.sum(axis=1) - 1.0) > self.BARY_TOLERANCE):
            raise AssemblyError('barycentric weights must sum to one')
        if np.any(self.barys < -self.BARY_TOLERANCE):
            raise AssemblyError('barycentric weights must be non-negative')
        return self

    def rest_positions(self):
        return self.lattice_x

    def elements(self):
        return self.tets

    def embedded_positions(self, x):
        """Fine-mesh positions for lattice vertex positions x."""
        x = np.asarray(x, dtype=np.float64)
        corners = x[self.tets[self.vtx_to_tet]]  # p x 4 x 3
        return np.einsum('pi,pij->pj', self.barys, corners)


def generate_lattice(x_embedded, faces=None, resolution=4, padding=0.05):
    """
    Embed points in a lattice of six-tet grid cells.

    The bounding box of ``x_embedded`` (grown by ``padding`` times its
    largest extent) is cut into cubes of edge ``extent / resolution``; only
    cubes holding at least one point are kept.
    """
    x_embedded = np.asarray(x_embedded, dtype=np.float64)
    if x_embedded.ndim != 2 or x_embedded.shape[1] != 3 or len(x_embedded) == 0:
        raise AssemblyError('lattice generation needs a non-empty (p, 3) point set')
    if resolution < 1:
        raise AssemblyError(f'lattice resolution must be at least 1, got {resolution}')
    if faces is None:
        faces = np.zeros((0, 3), dtype=np.int32)
    lo, hi = x_embedded.min(axis=0), x_embedded.max(axis=0)
    extent = max(float((hi - lo).max()), 1e-8)
    lo = lo - padding * extent
    hi = hi + padding * extent
    h = (hi - lo).max() / resolution
    dims = np.maximum(np.ceil((hi - lo) / h).astype(np.int64), 1)

    cell = np.clip(np.floor((x_embedded - lo) / h).astype(np.int64), 0, dims - 1)
    cell_id = (cell[:, 0] * dims[1] + cell[:, 1]) * dims[2] + cell[:, 2]
    cells, point_cell = np.unique(cell_id, return_inverse=True)
    point_cell = point_cell.reshape(-1)
    ci = cells // (dims[1] * dims[2])
    cj = (cells // dims[2]) % dims[1]
    ck = cells % dims[2]

    # corner c of a cell sits at offset (c & 1, (c >> 1) & 1, (c >> 2) & 1)
    offsets = np.array([[c & 1, (c >> 1) & 1, (c >> 2) & 1] for c in range(8)], dtype=np.int64)
    corner_ijk = np.stack((ci, cj, ck), axis=1)[:, None, :] + offsets[None, :, :]
    corner_id = (corner_ijk[..., 0] * (dims[1] + 1) + corner_ijk[..., 1]) * (dims[2] + 1) + corner_ijk[..., 2]
    used, corner_vertex = np.unique(corner_id.reshape(-1), return_inverse=True)
    corner_vertex = corner_vertex.reshape((len(cells), 8))
    gi = used // ((dims[1] + 1) * (dims[2] + 1))
    gj = (used // (dims[2] + 1)) % (dims[1] + 1)
    gk = used % (dims[2] + 1)
    lattice_x = lo + np.stack((gi, gj, gk), axis=1) * h

    tets = corner_vertex[:, CELL_TETS].reshape((-1, 4)).astype(np.int32)

    # pick, per point, the tet of its cell it is least outside of
    candidates = point_cell[:, None] * 6 + np.arange(6)[None, :]
    p = len(x_embedded)
    best_tet = np.zeros(p, dtype=np.int32)
    best_barys = np.zeros((p, 4))
    best_score = np.full(p, -np.inf)
    for s in range(6):
        t = candidates[:, s]
        corners = lattice_x[tets[t]]
        w = barycentric(x_embedded, corners[:, 0], corners[:, 1], corners[:, 2], corners[:, 3])
        score = w.min(axis=1)
        better = score > best_score
        best_tet[better] = t[better]
        best_barys[better] = w[better]
        best_score[better] = score[better]
    best_barys = np.maximum(best_barys, 0.0)
    best_barys /= best_barys.sum(axis=1, keepdims=True)

    lattice = EmbeddedMeshData(x_rest=x_embedded, faces=faces, tets=tets,
                               vtx_to_tet=best_tet, barys=best_barys, lattice_x=lattice_x)
    if np.any(tet_volumes(lattice_x, tets) <= 0):
        raise AssemblyError('lattice generation produced an inverted tet')
    return lattice.check()
