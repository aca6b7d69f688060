import taichi as ti

ti.init(arch=ti.cpu, default_fp=ti.f64)

from admmpd.errors import AssemblyError, FactorizationError  # noqa: E402
from admmpd.mesh import EmbeddedMeshData, TetMeshData, generate_lattice  # noqa: E402
from admmpd.options import Options  # noqa: E402
from admmpd.solver import Solver, SolverData, StepResult  # noqa: E402
