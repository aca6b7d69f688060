from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import scipy.sparse

from admmpd.assembly import compute_matrices, constraint_jacobian, constraint_rhs, update_M_xbar
from admmpd.constraints import pin_constraints
from admmpd.errors import AssemblyError, FactorizationError
from admmpd.global_solver import make_global_solver, sparsity_key
from admmpd.mesh import _check_indices
from admmpd.physics.projection import dual_step, local_step
from admmpd.utils.timer import Timer

# option fields that feed the assembled operators
MATERIAL_FIELDS = ('timestep', 'youngs', 'poisson', 'density', 'energy')


@dataclass
class SolverData:
    """Mutable state of one mesh; owned by exactly one Solver."""

    tets: np.ndarray
    x: np.ndarray  # n x 3 positions
    v: np.ndarray  # n x 3 velocities
    x_start: Optional[np.ndarray] = None  # x at the start of the timestep
    m: Optional[np.ndarray] = None  # lumped mass per vertex
    z: Optional[np.ndarray] = None  # projected reduced coordinates, rows of D x 3
    u: Optional[np.ndarray] = None  # scaled dual, rows of D x 3
    M_xbar: Optional[np.ndarray] = None
    Dx: Optional[np.ndarray] = None
    b: Optional[np.ndarray] = None
    D: Optional[scipy.sparse.csr_matrix] = None
    DtW2: Optional[scipy.sparse.csr_matrix] = None
    A: Optional[scipy.sparse.csr_matrix] = None
    K: Optional[list] = None  # per axis constraint matrices, c x n
    l: Optional[np.ndarray] = None  # constraint rhs, c
    spring_k: float = 0.0
    J: Optional[scipy.sparse.csr_matrix] = None  # interleaved K, c x 3n
    KtK: Optional[scipy.sparse.csr_matrix] = None  # J^T J, 3n x 3n
    indices: Optional[np.ndarray] = None  # per energy (first row of D, row count)
    rest_volumes: Optional[np.ndarray] = None
    weights: Optional[np.ndarray] = None
    energy_types: Optional[np.ndarray] = None


@dataclass
class StepResult:
    iterations: int = 0
    converged: bool = False
    residuals: List[float] = field(default_factory=list)
    dual_residuals: List[float] = field(default_factory=list)
    global_converged: bool = True
    inverted: int = 0
    factorization_failed: bool = False

    @property
    def residual(self):
        return self.residuals[-1] if self.residuals else float('nan')


class Solver:
    """
    ADMM projective dynamics on a tet mesh or an embedded lattice.

    ``mesh`` is anything exposing ``rest_positions()`` and ``elements()``;
    ``embedded_positions(x)`` is used when present.
    """

    def __init__(self, options, mesh):
        self._options = options.validate()
        if hasattr(mesh, 'check'):
            mesh.check()
        self.mesh = mesh
        x_rest = np.array(mesh.rest_positions(), dtype=np.float64)
        tets = np.asarray(mesh.elements())
        if x_rest.ndim != 2 or x_rest.shape[1] != 3:
            raise AssemblyError(f'rest positions must be (n, 3), got shape {x_rest.shape}')
        if not np.all(np.isfinite(x_rest)):
            raise AssemblyError('rest positions contain non-finite coordinates')
        if tets.size == 0:
            raise AssemblyError('mesh has no tets')
        _check_indices('tets', tets, 4, len(x_rest))
        self.data = SolverData(tets=tets.astype(np.int32),
                               x=x_rest.copy(), v=np.zeros_like(x_rest))
        self.x_rest = x_rest
        self.global_solver = make_global_solver(options.solver, options.verbose)
        self.d_pattern = None
        self.warm_reset = True
        with Timer("Matrix Assembly"):
            self.assemble()

    def assemble(self):
        compute_matrices(self._options, self.data, self.x_rest, self.data.tets)
        pattern = sparsity_key(self.data.D)
        if pattern != self.d_pattern:
            self.d_pattern = pattern
            self.reset_topology()

    def reset_topology(self):
        """Drop the warm start and every cached factorization or coloring."""
        self.warm_reset = True
        self.global_solver.reset()

    @property
    def options(self):
        return self._options

    @options.setter
    def options(self, options):
        old, self._options = self._options, options.validate()
        if any(getattr(old, f) != getattr(options, f) for f in MATERIAL_FIELDS):
            with Timer("Matrix Assembly"):
                self.assemble()
        if old.solver != options.solver or old.verbose != options.verbose:
            self.global_solver = make_global_solver(options.solver, options.verbose)

    @property
    def x(self):
        return self.data.x

    @x.setter
    def x(self, x):
        x = np.array(x, dtype=np.float64)
        if x.shape != self.data.x.shape:
            raise ValueError(f'positions must have shape {self.data.x.shape}, got {x.shape}')
        self.data.x = x

    @property
    def v(self):
        return self.data.v

    @v.setter
    def v(self, v):
        v = np.array(v, dtype=np.float64)
        if v.shape != self.data.v.shape:
            raise ValueError(f'velocities must have shape {self.data.v.shape}, got {v.shape}')
        self.data.v = v

    def embedded_positions(self):
        if hasattr(self.mesh, 'embedded_positions'):
            return self.mesh.embedded_positions(self.data.x)
        return self.data.x

    def set_constraints(self, K, l, spring_k):
        """Install K[3] (c x n each) and l (c); ``K=None`` removes all constraints."""
        data = self.data
        if K is None:
            data.K = data.l = data.J = data.KtK = None
            data.spring_k = 0.0
            return
        if not spring_k >= 0:
            raise ValueError(f'spring_k must be non-negative, got {spring_k}')
        n = len(data.x)
        K = [scipy.sparse.csr_matrix(Kd) for Kd in K]
        J = constraint_jacobian(K, n)
        l = np.asarray(l, dtype=np.float64).reshape(-1)
        if l.shape != (J.shape[0],):
            raise ValueError(f'constraint rhs must have {J.shape[0]} entries, got {l.shape}')
        data.K, data.l, data.J = K, l, J
        data.KtK = (J.T @ J).tocsr()
        data.KtK.sort_indices()
        data.spring_k = float(spring_k)

    def set_pins(self, indices, positions, spring_k):
        if len(indices) == 0:
            self.set_constraints(None, None, 0.0)
            return
        K, l = pin_constraints(len(self.data.x), indices, positions, self.mesh)
        self.set_constraints(K, l, spring_k)

    def step(self):
        """Advance one timestep. Always returns a StepResult; only malformed input raises."""
        options, data = self._options, self.data
        verbose = options.verbose
        result = StepResult()
        with Timer("Time Step"):
            with Timer("Initialization"):
                data.x_start = data.x.copy()
                update_M_xbar(options, data)
                data.Dx = data.D @ data.x
                if self.warm_reset or data.z is None or data.z.shape != data.Dx.shape:
                    data.z = data.Dx.copy()
                    data.u = np.zeros_like(data.Dx)
                    self.warm_reset = False
                k = data.spring_k * options.mult_k
                c_rhs = constraint_rhs(data, k)
            with Timer("Global Prepare"):
                try:
                    self.global_solver.prepare(options, data, k)
                except FactorizationError as e:
                    print("Direct solve failed:", e)
                    result.factorization_failed = True
            for it in range(0 if result.factorization_failed else options.max_admm_iters):
                with Timer("Global Solve"):
                    data.b = data.M_xbar + data.DtW2 @ (data.z - data.u) + c_rhs
                    try:
                        g = self.global_solver.solve(options, data, data.b)
                    except FactorizationError as e:
                        print("Direct solve failed:", e)
                        result.factorization_failed = True
                        break
                    data.x = g.x
                    result.global_converged = result.global_converged and g.converged
                    data.Dx = data.D @ data.x
                with Timer("Local Step"):
                    z_prev = data.z
                    inverted = local_step(options, data)
                    result.inverted = max(result.inverted, inverted)
                with Timer("Compute Residual"):
                    primal = float(np.linalg.norm(data.Dx - data.z))
                    dual = float(np.linalg.norm(data.DtW2 @ (data.z - z_prev)))
                    result.residuals.append(primal)
                    result.dual_residuals.append(dual)
                    if verbose:
                        print(f"ADMM iter {it}: primal residual = {primal:g}, dual residual = {dual:g}")
                        if inverted:
                            print(f"ADMM iter {it}: {inverted} inverted element(s)")
                with Timer("Dual Step"):
                    dual_step(data)
                result.iterations = it + 1
                if primal < options.min_res and dual < options.min_res:
                    result.converged = True
                    break
            if result.iterations > 0:
                data.v = (data.x - data.x_start) / options.timestep
        if verbose and not result.converged:
            print("ADMM did not converge in", result.iterations, "iterations, residual =", result.residual)
        return result
