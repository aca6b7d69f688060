import taichi as ti
import numpy as np

real = ti.f64


@ti.func
def signed_svd(F):
    """
    SVD with proper rotations: det(U) = det(V) = 1, so a reflection shows up
    as a negative last singular value.
    """
    U, sig, V = ti.svd(F, real)
    if U.determinant() < 0:
        for i in ti.static(range(3)):
            U[i, 2] = -U[i, 2]
        sig[2, 2] = -sig[2, 2]
    if V.determinant() < 0:
        for i in ti.static(range(3)):
            V[i, 2] = -V[i, 2]
        sig[2, 2] = -sig[2, 2]
    return U, sig, V


def edge_matrices(x, tets):
    """Columns x1 - x0, x2 - x0, x3 - x0 per tet, shape (t, 3, 3)."""
    x = np.asarray(x, dtype=np.float64)
    tets = np.asarray(tets)
    x0 = x[tets[:, 0]]
    return np.stack((x[tets[:, 1]] - x0, x[tets[:, 2]] - x0, x[tets[:, 3]] - x0), axis=2)


def tet_volumes(x, tets):
    """Signed volumes, positive for a right-handed vertex order."""
    if len(tets) == 0:
        return np.zeros(0)
    return np.linalg.det(edge_matrices(x, tets)) / 6.0


def barycentric(p, a, b, c, d):
    """
    Barycentric weights of points p in tets (a, b, c, d); all arguments are
    (k, 3) arrays (or single 3-vectors). Returns (k, 4).
    """
    p, a, b, c, d = (np.atleast_2d(np.asarray(v, dtype=np.float64)) for v in (p, a, b, c, d))
    T = np.stack((b - a, c - a, d - a), axis=2)
    l123 = np.linalg.solve(T, (p - a)[..., None])[..., 0]
    return np.concatenate((1.0 - l123.sum(axis=1, keepdims=True), l123), axis=1)
