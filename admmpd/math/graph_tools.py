import numpy as np
import scipy.sparse


def find_boundary(mesh_elements):
    """
    Surface triangles of a tetrahedron mesh.

    Every tet contributes its four faces wound outward (for a positively
    oriented tet); a face shared by two tets cancels, the rest is the
    boundary. Returns (boundary_points, boundary_edges, boundary_triangles).
    """
    mesh_elements = np.asarray(mesh_elements, dtype=np.int64).reshape((-1, 4))
    if len(mesh_elements) == 0:
        return set(), np.zeros((0, 2), dtype=np.int32), np.zeros((0, 3), dtype=np.int32)
    p0, p1, p2, p3 = mesh_elements.T
    triangles = np.vstack((np.stack((p0, p2, p1), axis=1),
                           np.stack((p0, p3, p2), axis=1),
                           np.stack((p0, p1, p3), axis=1),
                           np.stack((p1, p2, p3), axis=1)))
    keys = np.sort(triangles, axis=1)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    boundary_triangles_ = triangles[counts[inverse.reshape(-1)] == 1].astype(np.int32)
    boundary_points_ = set(np.unique(boundary_triangles_).tolist())
    edges = np.vstack((boundary_triangles_[:, [0, 1]],
                       boundary_triangles_[:, [1, 2]],
                       boundary_triangles_[:, [2, 0]]))
    boundary_edges_ = np.unique(np.sort(edges, axis=1), axis=0).astype(np.int32)
    return boundary_points_, boundary_edges_, boundary_triangles_


def boundary_faces(mesh_elements):
    return find_boundary(mesh_elements)[2]


def vertex_adjacency(n_vertices, *matrices):
    """
    Vertex graph of one or more sparse system matrices.

    A matrix may be over vertices (n x n) or over interleaved xyz dofs
    (3n x 3n); dofs are collapsed onto their vertex. Two vertices are
    adjacent when any stored off-diagonal entry couples them. The pattern is
    used as stored, so explicit zeros count as couplings.
    """
    rows, cols = [], []
    for mat in matrices:
        if mat is None:
            continue
        coo = scipy.sparse.coo_matrix(mat)
        block = coo.shape[0] // n_vertices
        rows.append(coo.row // block)
        cols.append(coo.col // block)
    if not rows:
        return scipy.sparse.csr_matrix((n_vertices, n_vertices), dtype=bool)
    rows, cols = np.concatenate(rows), np.concatenate(cols)
    keep = rows != cols
    rows, cols = rows[keep], cols[keep]
    adj = scipy.sparse.csr_matrix((np.ones(len(rows), dtype=bool), (rows, cols)),
                                  shape=(n_vertices, n_vertices))
    adj = (adj + adj.T).tocsr()
    adj.sum_duplicates()
    return adj


def greedy_coloring(adj):
    """
    Partition vertices into independent sets, largest degree first.
    Returns a list of int32 index arrays, one per color.
    """
    n = adj.shape[0]
    indptr, indices = adj.indptr, adj.indices
    deg = np.diff(indptr)
    order = np.argsort(-deg, kind='stable')
    colors = -np.ones(n, dtype=np.int64)
    used = np.zeros(max(int(deg.max(initial=0)) + 2, 1), dtype=bool)
    for v in order:
        used[:] = False
        for nb in indices[indptr[v]:indptr[v + 1]]:
            c = colors[nb]
            if c >= 0:
                used[c] = True
        c = 0
        while used[c]:
            c += 1
        colors[v] = c
    n_colors = int(colors.max(initial=-1)) + 1
    return [np.flatnonzero(colors == c).astype(np.int32) for c in range(n_colors)]


def validate_coloring(adj, groups):
    colors = -np.ones(adj.shape[0], dtype=np.int64)
    for c, group in enumerate(groups):
        colors[group] = c
    if np.any(colors < 0):
        raise RuntimeError('Invalid coloring: some vertices have no color.')
    coo = adj.tocoo()
    clash = colors[coo.row] == colors[coo.col]
    if np.any(clash):
        i = np.flatnonzero(clash)[0]
        raise RuntimeError(f'Invalid coloring: vertices {coo.row[i]} and {coo.col[i]} share color {colors[coo.row[i]]}.')
    return True
