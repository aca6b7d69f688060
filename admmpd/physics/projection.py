import taichi as ti
import numpy as np

from admmpd.energy import ENERGY_ARAP
from admmpd.math.math_tools import signed_svd

real = ti.f64


@ti.kernel
def project_energies(Dx: ti.types.ndarray(), u: ti.types.ndarray(), z: ti.types.ndarray(),
                     offsets: ti.types.ndarray(), energy_types: ti.types.ndarray(),
                     stiffness: ti.types.ndarray(), W2: ti.types.ndarray(),
                     lo: real, hi: real) -> ti.i32:
    inverted = 0
    for e in range(offsets.shape[0]):
        o = offsets[e]
        # the three rows of energy e hold F^T
        F = ti.Matrix.zero(real, 3, 3)
        P = ti.Matrix.zero(real, 3, 3)
        for i in ti.static(range(3)):
            for j in ti.static(range(3)):
                F[j, i] = Dx[o + i, j]
                P[j, i] = Dx[o + i, j] + u[o + i, j]
        if F.determinant() < 0:
            inverted += 1
        U, sig, V = signed_svd(P)
        Z = P
        if energy_types[e] == ENERGY_ARAP:
            R = U @ V.transpose()
            Z = (stiffness[e] * R + W2[e] * P) / (stiffness[e] + W2[e])
        else:
            for i in ti.static(range(3)):
                sig[i, i] = ti.min(ti.max(sig[i, i], lo), hi)
            Z = U @ sig @ V.transpose()
        for i in ti.static(range(3)):
            for j in ti.static(range(3)):
                z[o + i, j] = Z[j, i]
    return inverted


def local_step(options, data):
    """Project Dx + u of every energy onto its admissible set, writing z. Returns the inverted tet count."""
    la, mu = options.lame()
    dt = options.timestep
    stiffness = 2 * mu * dt * dt * data.rest_volumes
    W = dt * data.weights * np.sqrt(data.rest_volumes)
    z = np.zeros_like(data.Dx)
    lo, hi = options.strain_limit
    inverted = project_energies(np.ascontiguousarray(data.Dx), np.ascontiguousarray(data.u), z,
                                np.ascontiguousarray(data.indices[:, 0], dtype=np.int32),
                                np.ascontiguousarray(data.energy_types, dtype=np.int32),
                                np.ascontiguousarray(stiffness), np.ascontiguousarray(W * W),
                                float(lo), float(hi))
    data.z = z
    return int(inverted)


def dual_step(data):
    data.u += data.Dx - data.z
