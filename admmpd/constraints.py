import numpy as np
import scipy.sparse


def pin_constraints(n_vertices, indices, positions, mesh=None):
    """
    Soft positional pins as constraint matrices K[3] and rhs l.

    Pin p, axis d is row 3 p + d: K[d][3 p + d] picks the pinned point's
    coordinate and l[3 p + d] is the target. For an embedded mesh the indices
    refer to embedded vertices and each row mixes the four lattice corners
    with the embedding weights.
    """
    indices = np.asarray(indices, dtype=np.int64).reshape(-1)
    positions = np.asarray(positions, dtype=np.float64).reshape((-1, 3))
    if len(indices) != len(positions):
        raise ValueError(f'{len(indices)} pin indices but {len(positions)} pin positions')
    n_pins = len(indices)

    if mesh is not None and hasattr(mesh, 'vtx_to_tet'):
        if n_pins and (indices.min() < 0 or indices.max() >= len(mesh.x_rest)):
            raise ValueError('pin index outside the embedded mesh')
        cols = mesh.tets[mesh.vtx_to_tet[indices]]  # pins x 4
        vals = mesh.barys[indices]
    else:
        if n_pins and (indices.min() < 0 or indices.max() >= n_vertices):
            raise ValueError('pin index outside the mesh')
        cols = indices[:, None]
        vals = np.ones((n_pins, 1))

    K = []
    for d in range(3):
        rows = np.repeat(3 * np.arange(n_pins) + d, cols.shape[1])
        K.append(scipy.sparse.csr_matrix((vals.reshape(-1), (rows, cols.reshape(-1))),
                                         shape=(3 * n_pins, n_vertices)))
    l = positions.reshape(-1).copy()
    return K, l
