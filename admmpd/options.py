from dataclasses import dataclass, fields, replace
from typing import Tuple

import numpy as np

ENERGY_TYPES = ('arap', 'strain_limit')
SOLVER_TYPES = ('direct', 'cg', 'gs')


def lame_parameters(youngs, poisson):
    la = youngs * poisson / ((1 + poisson) * (1 - 2 * poisson))
    mu = youngs / (2 * (1 + poisson))
    return la, mu


@dataclass(frozen=True)
class Options:
    """
    Tunables of one simulation run.

    Constructed once and read-only afterwards, so a single instance can be
    shared by several solvers. Use ``dataclasses.replace`` to derive a
    modified copy (e.g. to switch the global solver after a failed
    factorization).
    """

    timestep: float = 1.0 / 24.0
    max_admm_iters: int = 50
    max_cg_iters: int = 10
    max_gs_iters: int = 30
    mult_k: float = 1.0  # stiffness multiplier for constraints
    min_res: float = 1e-6
    youngs: float = 1000000.0
    poisson: float = 0.299
    grav: Tuple[float, float, float] = (0.0, 0.0, -9.8)
    density: float = 1100.0  # kg/m^3
    energy: str = 'arap'
    strain_limit: Tuple[float, float] = (0.9, 1.1)
    solver: str = 'direct'
    verbose: bool = False

    def validate(self):
        if not self.timestep > 0:
            raise ValueError(f'timestep must be positive, got {self.timestep}')
        for name in ('max_admm_iters', 'max_cg_iters', 'max_gs_iters'):
            value = getattr(self, name)
            if int(value) != value or value < 0:
                raise ValueError(f'{name} must be a non-negative integer, got {value}')
        if not self.mult_k >= 0:
            raise ValueError(f'mult_k must be non-negative, got {self.mult_k}')
        if not self.min_res > 0:
            raise ValueError(f'min_res must be positive, got {self.min_res}')
        if not self.youngs > 0:
            raise ValueError(f'youngs must be positive, got {self.youngs}')
        if not 0 <= self.poisson < 0.5:
            raise ValueError(f'poisson must lie in [0, 0.5), got {self.poisson}')
        if not self.density > 0:
            raise ValueError(f'density must be positive, got {self.density}')
        grav = np.asarray(self.grav, dtype=np.float64)
        if grav.shape != (3,) or not np.all(np.isfinite(grav)):
            raise ValueError(f'grav must be a finite 3-vector, got {self.grav}')
        if self.energy not in ENERGY_TYPES:
            raise ValueError(f'unknown energy {self.energy!r}, expected one of {ENERGY_TYPES}')
        if self.solver not in SOLVER_TYPES:
            raise ValueError(f'unknown solver {self.solver!r}, expected one of {SOLVER_TYPES}')
        if len(self.strain_limit) != 2:
            raise ValueError(f'strain_limit must be a (lo, hi) pair, got {self.strain_limit}')
        lo, hi = self.strain_limit
        if not 0 < lo <= 1 <= hi:
            raise ValueError(f'strain_limit must satisfy 0 < lo <= 1 <= hi, got {self.strain_limit}')
        return self

    def lame(self):
        return lame_parameters(self.youngs, self.poisson)

    def gravity(self):
        return np.asarray(self.grav, dtype=np.float64)

    @classmethod
    def from_dict(cls, settings):
        known = {f.name for f in fields(cls)}
        unknown = set(settings) - known
        if unknown:
            raise ValueError(f'unknown option(s): {sorted(unknown)}')
        values = dict(settings)
        for name in ('grav', 'strain_limit'):
            if name in values:
                values[name] = tuple(values[name])
        return cls(**values).validate()

    def with_solver(self, solver):
        return replace(self, solver=solver).validate()
