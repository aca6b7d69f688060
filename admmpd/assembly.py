import numpy as np
import scipy.sparse

from admmpd.energy import append_energies, reduction_matrix
from admmpd.errors import AssemblyError


def compute_masses(options, tets, rest_volumes, n_vertices):
    """Lumped mass: a quarter of every tet's mass goes to each of its corners."""
    m = np.zeros(n_vertices)
    np.add.at(m, np.asarray(tets).reshape(-1), np.repeat(rest_volumes * options.density / 4, 4))
    return m


def row_weights(options, data):
    """W per row of D: timestep * weights[i] * sqrt(rest_volumes[i]) on every row of energy i."""
    W = options.timestep * data.weights * np.sqrt(data.rest_volumes)
    return np.repeat(W, data.indices[:, 1])


def compute_matrices(options, data, x_rest, tets):
    """
    Register the tet energies and build m, D, DtW2 and A = M + DtW2 D.
    Any previous registry in ``data`` is discarded.
    """
    n = len(x_rest)
    data.indices = data.rest_volumes = data.weights = data.energy_types = None
    triplets = append_energies(options, x_rest, tets, data)
    n_rows = int(data.indices[:, 1].sum())
    data.D = reduction_matrix(triplets, n_rows, n)

    data.m = compute_masses(options, tets, data.rest_volumes, n)
    unused = np.flatnonzero(data.m <= 0)
    if len(unused):
        raise AssemblyError(f'{len(unused)} vertex(es) belong to no tet, first is vertex {unused[0]}')

    W = row_weights(options, data)
    data.DtW2 = (data.D.T @ scipy.sparse.diags(W * W)).tocsr()
    data.A = (scipy.sparse.diags(data.m) + data.DtW2 @ data.D).tocsr()
    data.A.sum_duplicates()
    data.A.sort_indices()


def update_M_xbar(options, data):
    dt = options.timestep
    xbar = data.x_start + dt * data.v + dt * dt * options.gravity()
    data.M_xbar = data.m[:, None] * xbar


def constraint_jacobian(K, n_vertices):
    """
    Interleave the per-axis constraint matrices K[0], K[1], K[2] (c x n each)
    into one c x 3n Jacobian J with J[:, 3 j + d] = K[d][:, j].
    """
    if len(K) != 3:
        raise ValueError(f'expected one constraint matrix per axis, got {len(K)}')
    n_rows = K[0].shape[0]
    J = scipy.sparse.csr_matrix((n_rows, 3 * n_vertices))
    for d in range(3):
        if K[d].shape != (n_rows, n_vertices):
            raise ValueError(f'K[{d}] has shape {K[d].shape}, expected {(n_rows, n_vertices)}')
        coo = scipy.sparse.coo_matrix(K[d])
        J = J + scipy.sparse.csr_matrix((coo.data, (coo.row, coo.col * 3 + d)), shape=(n_rows, 3 * n_vertices))
    J = J.tocsr()
    J.sort_indices()
    return J


def system_matrix(data, k):
    """The full operator kron(A, I3) + k J^T J over interleaved xyz dofs."""
    A3 = scipy.sparse.kron(data.A, scipy.sparse.identity(3), format='csr')
    if data.KtK is not None:
        A3 = A3 + k * data.KtK
    A3 = A3.tocsr()
    A3.sum_duplicates()
    A3.sort_indices()
    return A3


def constraint_rhs(data, k):
    """k J^T l as an n x 3 array, zero without constraints."""
    n = data.A.shape[0]
    if data.J is None:
        return np.zeros((n, 3))
    return (k * (data.J.T @ data.l)).reshape((n, 3))
