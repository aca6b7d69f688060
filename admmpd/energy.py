import numpy as np
import scipy.sparse

from admmpd.errors import AssemblyError
from admmpd.math.math_tools import edge_matrices

ENERGY_ARAP = 0
ENERGY_STRAIN_LIMIT = 1
ENERGY_IDS = {'arap': ENERGY_ARAP, 'strain_limit': ENERGY_STRAIN_LIMIT}

# reduced rows per tet energy: the rows of F^T
ROWS_PER_TET = 3


def append_energies(options, x_rest, tets, data, energy=None):
    """
    Register one energy per tet in ``data`` and return its rows of D.

    Energy e owns rows [indices[e, 0], indices[e, 0] + indices[e, 1]) of D;
    those rows applied to the positions give F^T of the tet, with F the
    deformation gradient against the rest shape. Appends to the registry
    arrays ``indices``, ``rest_volumes``, ``weights`` and ``energy_types``.
    """
    energy = options.energy if energy is None else energy
    if energy not in ENERGY_IDS:
        raise AssemblyError(f'unknown energy type {energy!r}')
    tets = np.asarray(tets, dtype=np.int32)
    n_tets = len(tets)
    Dm = edge_matrices(x_rest, tets)
    volumes = np.linalg.det(Dm) / 6.0
    bad = np.flatnonzero(~(volumes > 0))
    if len(bad):
        raise AssemblyError(f'{len(bad)} tet(s) with non-positive rest volume, first is tet {bad[0]} '
                            f'(volume {volumes[bad[0]]:g})')
    Bm = np.linalg.inv(Dm)

    row_offset = 0
    if data.indices is not None and len(data.indices):
        row_offset = int(data.indices[-1, 0] + data.indices[-1, 1])
    la, mu = options.lame()
    weight = np.sqrt(la + mu * 2 / 3)

    indices = np.stack((row_offset + ROWS_PER_TET * np.arange(n_tets), np.full(n_tets, ROWS_PER_TET)), axis=1)
    data.indices = indices if data.indices is None else np.vstack((data.indices, indices))
    data.rest_volumes = np.concatenate((np.zeros(0) if data.rest_volumes is None else data.rest_volumes, volumes))
    data.weights = np.concatenate((np.zeros(0) if data.weights is None else data.weights, np.full(n_tets, weight)))
    types = np.full(n_tets, ENERGY_IDS[energy], dtype=np.int32)
    data.energy_types = types if data.energy_types is None else np.concatenate((data.energy_types, types))

    # F[:, r] = sum_k (x_{k+1} - x_0) Bm[k, r]
    rows, cols, vals = [], [], []
    for r in range(ROWS_PER_TET):
        row = row_offset + ROWS_PER_TET * np.arange(n_tets) + r
        for k in range(3):
            rows.append(row)
            cols.append(tets[:, k + 1])
            vals.append(Bm[:, k, r])
        rows.append(row)
        cols.append(tets[:, 0])
        vals.append(-Bm[:, :, r].sum(axis=1))
    return np.concatenate(rows), np.concatenate(cols), np.concatenate(vals)


def reduction_matrix(triplets, n_rows, n_vertices):
    rows, cols, vals = triplets
    D = scipy.sparse.csr_matrix((vals, (rows, cols)), shape=(n_rows, n_vertices))
    D.sum_duplicates()
    D.sort_indices()
    return D
