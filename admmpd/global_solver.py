from dataclasses import dataclass

import numpy as np
import taichi as ti
from sksparse.cholmod import cholesky, CholmodNotPositiveDefiniteError

from admmpd.assembly import system_matrix
from admmpd.errors import FactorizationError
from admmpd.math.graph_tools import greedy_coloring, validate_coloring, vertex_adjacency

real = ti.f64


@dataclass
class GlobalResult:
    x: np.ndarray  # n x 3
    converged: bool
    iterations: int
    residual: float


def sparsity_key(mat):
    if mat is None:
        return None
    return mat.shape, mat.indptr.tobytes(), mat.indices.tobytes()


class DirectSolver:
    """
    Sparse Cholesky of the system matrix. The symbolic analysis is kept while
    the sparsity pattern is unchanged and only the numeric factor is redone.
    """

    name = 'direct'

    def __init__(self, verbose=False):
        self.verbose = verbose
        self.factor = None
        self.pattern = None
        self.matrix = None
        self.per_axis = True

    def reset(self):
        self.factor = None
        self.pattern = None
        self.matrix = None

    def prepare(self, options, data, k):
        # without constraints the three axes decouple and share A
        self.per_axis = data.KtK is None
        mat = data.A if self.per_axis else system_matrix(data, k)
        mat = mat.tocsc()
        mat.sort_indices()
        pattern = sparsity_key(mat)
        if self.factor is not None and pattern == self.pattern and np.array_equal(mat.data, self.matrix.data):
            return
        try:
            if self.factor is not None and pattern == self.pattern:
                self.factor.cholesky_inplace(mat)
            else:
                self.factor = cholesky(mat, mode='supernodal')
        except CholmodNotPositiveDefiniteError as e:
            self.reset()
            raise FactorizationError(f'system matrix is not positive definite: {e}') from e
        self.pattern = pattern
        self.matrix = mat

    def solve(self, options, data, b):
        if self.factor is None:
            raise FactorizationError('no valid factorization, prepare() failed or was not called')
        if self.per_axis:
            x = self.factor(b)
            residual = np.linalg.norm(self.matrix @ x - b)
        else:
            x = self.factor(b.reshape(-1))
            residual = np.linalg.norm(self.matrix @ x - b.reshape(-1))
            x = x.reshape((-1, 3))
        if not np.all(np.isfinite(x)):
            raise FactorizationError('Cholesky solve produced non-finite values')
        return GlobalResult(np.asarray(x).reshape((-1, 3)), True, 1, float(residual))


class CGData:
    """Scratch vectors of one conjugate gradient solve, over interleaved dofs."""

    def __init__(self, n_dofs):
        self.r = np.zeros(n_dofs)  # residual
        self.q = np.zeros(n_dofs)  # preconditioned residual
        self.p = np.zeros(n_dofs)  # search direction
        self.Ap = np.zeros(n_dofs)


class ConjugateGradientSolver:
    """Jacobi preconditioned conjugate gradient, warm started from the current positions."""

    name = 'cg'

    def __init__(self, verbose=False):
        self.verbose = verbose
        self.A3 = None
        self.diag = None
        self.cgdata = None

    def reset(self):
        self.A3 = None
        self.diag = None
        self.cgdata = None

    def prepare(self, options, data, k):
        self.A3 = system_matrix(data, k)
        diag = self.A3.diagonal()
        self.diag = np.where(np.abs(diag) > 1e-10, diag, 1.0)
        if self.cgdata is None or len(self.cgdata.r) != self.A3.shape[0]:
            self.cgdata = CGData(self.A3.shape[0])

    def solve(self, options, data, b):
        cg = self.cgdata
        x = np.array(data.x, dtype=np.float64).reshape(-1)
        cg.r[:] = b.reshape(-1) - self.A3 @ x
        cg.q[:] = cg.r / self.diag
        cg.p[:] = cg.q
        zTr = cg.r @ cg.q
        residual = np.linalg.norm(cg.r)
        iters = 0
        for it in range(options.max_cg_iters):
            if residual < options.min_res:
                if self.verbose:
                    print("CG terminates at", it, "; residual =", residual)
                return GlobalResult(x.reshape((-1, 3)), True, it, float(residual))
            cg.Ap[:] = self.A3 @ cg.p
            pAp = cg.p @ cg.Ap
            if pAp <= 0:
                break
            alpha = zTr / pAp
            x += alpha * cg.p
            cg.r -= alpha * cg.Ap
            cg.q[:] = cg.r / self.diag
            zTr_last = zTr
            zTr = cg.q @ cg.r
            cg.p[:] = cg.q + (zTr / zTr_last) * cg.p
            residual = np.linalg.norm(cg.r)
            iters = it + 1
        converged = bool(residual < options.min_res)
        if self.verbose and not converged:
            print("ConjugateGradient stopped, iter =", iters, "; residual =", residual)
        return GlobalResult(x.reshape((-1, 3)), converged, iters, float(residual))


@ti.kernel
def sweep_color(indptr: ti.types.ndarray(), indices: ti.types.ndarray(), values: ti.types.ndarray(),
                b: ti.types.ndarray(), x: ti.types.ndarray(), group: ti.types.ndarray()):
    # vertices of one color share no block, so every update reads settled neighbours
    for g in range(group.shape[0]):
        v = group[g]
        r = ti.Vector.zero(real, 3)
        Aii = ti.Matrix.zero(real, 3, 3)
        for d in ti.static(range(3)):
            row = 3 * v + d
            r[d] = b[row]
            for jj in range(indptr[row], indptr[row + 1]):
                col = indices[jj]
                if col // 3 == v:
                    for c in ti.static(range(3)):
                        if col == 3 * v + c:
                            Aii[d, c] = values[jj]
                else:
                    r[d] -= values[jj] * x[col]
        xi = Aii.inverse() @ r
        for d in ti.static(range(3)):
            x[3 * v + d] = xi[d]


class GSData:
    """Gauss-Seidel workspace: CSR arrays of the operator and the cached colorings."""

    def __init__(self):
        self.KtK = None
        self.last_dx = None
        self.A_pattern = None
        self.A_colors = None
        self.KtK_pattern = None
        self.A_KtK_colors = None


class GaussSeidelSolver:
    """
    Block (per vertex) Gauss-Seidel over a graph coloring of the vertices.
    One kernel launch per color; colors run in order.
    """

    name = 'gs'

    def __init__(self, verbose=False):
        self.verbose = verbose
        self.gsdata = GSData()
        self.colors = None
        self.csr = None
        self.A3 = None

    def reset(self):
        self.gsdata = GSData()
        self.colors = None
        self.csr = None
        self.A3 = None

    def update_colors(self, data):
        gs = self.gsdata
        n = data.A.shape[0]
        A_pattern = sparsity_key(data.A)
        if A_pattern != gs.A_pattern:
            adj = vertex_adjacency(n, data.A)
            gs.A_colors = greedy_coloring(adj)
            validate_coloring(adj, gs.A_colors)
            gs.A_pattern = A_pattern
            gs.KtK_pattern = None
        if data.KtK is None:
            return gs.A_colors
        KtK_pattern = sparsity_key(data.KtK)
        if KtK_pattern != gs.KtK_pattern:
            adj = vertex_adjacency(n, data.A, data.KtK)
            gs.A_KtK_colors = greedy_coloring(adj)
            validate_coloring(adj, gs.A_KtK_colors)
            gs.KtK_pattern = KtK_pattern
            if self.verbose:
                print("Gauss-Seidel recolored:", len(gs.A_KtK_colors), "colors")
        return gs.A_KtK_colors

    def prepare(self, options, data, k):
        self.gsdata.KtK = data.KtK
        self.colors = self.update_colors(data)
        A3 = system_matrix(data, k)
        self.csr = (np.ascontiguousarray(A3.indptr, dtype=np.int32),
                    np.ascontiguousarray(A3.indices, dtype=np.int32),
                    np.ascontiguousarray(A3.data, dtype=np.float64))
        self.A3 = A3

    def solve(self, options, data, b):
        gs = self.gsdata
        indptr, indices, values = self.csr
        rhs = np.ascontiguousarray(b.reshape(-1), dtype=np.float64)
        x = np.array(data.x, dtype=np.float64).reshape(-1)
        gs.last_dx = np.zeros_like(x)
        converged = False
        it = 0
        while it < options.max_gs_iters:
            x_prev = x.copy()
            for group in self.colors:
                sweep_color(indptr, indices, values, rhs, x, group)
            gs.last_dx = x - x_prev
            it += 1
            if np.abs(gs.last_dx).max(initial=0.0) < options.min_res:
                converged = True
                break
        residual = np.linalg.norm(self.A3 @ x - rhs)
        if it == 0:
            # no sweep ran, judge the warm start by its residual
            converged = bool(residual < options.min_res)
        if self.verbose:
            print("Gauss-Seidel iters:", it, ", residual:", residual)
        return GlobalResult(x.reshape((-1, 3)), converged, it, float(residual))


SOLVERS = {
    'direct': DirectSolver,
    'cg': ConjugateGradientSolver,
    'gs': GaussSeidelSolver,
}


def make_global_solver(name, verbose=False):
    if name not in SOLVERS:
        raise ValueError(f'unknown global solver {name!r}, expected one of {sorted(SOLVERS)}')
    return SOLVERS[name](verbose=verbose)
