import argparse
import os

import numpy as np

from admmpd.mesh import TetMeshData, generate_lattice
from admmpd.options import Options, SOLVER_TYPES
from admmpd.reader import load_tet_mesh, write_obj
from admmpd.solver import Solver
from admmpd.utils.logger import Logger
from admmpd.utils.timer import Timer, Timer_Print


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Simulate a tet mesh with ADMM projective dynamics.")
    parser.add_argument("mesh", help="Tet mesh file (.msh, .vtk, ...) or 'cube'.")
    parser.add_argument("--frames", type=int, default=24, help="Number of timesteps to simulate.")
    parser.add_argument("--solver", choices=SOLVER_TYPES, default="direct", help="Global solver.")
    parser.add_argument("--output", default="output", help="Directory for objs/ and log.txt.")
    parser.add_argument("--pin-below", type=float, default=None, help="Pin every vertex with z below this height.")
    parser.add_argument("--pin-k", type=float, default=1e6, help="Stiffness of the pins.")
    parser.add_argument("--lattice", type=int, default=0, help="Embed the mesh in a lattice of this resolution.")
    parser.add_argument("--iters", type=int, default=Options.max_admm_iters, help="ADMM iterations per step.")
    parser.add_argument("--verbose", action="store_true", help="Print per-iteration residuals.")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    directory = args.output.rstrip('/') + '/'
    os.makedirs(directory + 'objs/', exist_ok=True)
    with Logger(directory + 'log.txt'):
        options = Options(solver=args.solver, max_admm_iters=args.iters, verbose=args.verbose).validate()
        mesh_particles, mesh_elements = load_tet_mesh(args.mesh)
        if args.lattice > 0:
            surface = TetMeshData(mesh_particles, mesh_elements)
            mesh = generate_lattice(mesh_particles, surface.faces, resolution=args.lattice)
            faces = mesh.faces
        else:
            mesh = TetMeshData(mesh_particles, mesh_elements)
            faces = mesh.faces
        print("Vertices:", len(mesh.rest_positions()), ", tets:", len(mesh.elements()))
        solver = Solver(options, mesh)
        if args.pin_below is not None:
            pinned = np.flatnonzero(mesh_particles[:, 2] < args.pin_below)
            print("Pinned vertices:", len(pinned))
            solver.set_pins(pinned, mesh_particles[pinned], args.pin_k)
        write_obj(directory + f'objs/{0:06d}.obj', solver.embedded_positions(), faces)
        for f in range(1, args.frames + 1):
            with Timer("Frame"):
                print("==================== Frame: ", f, " ====================")
                result = solver.step()
                print("ADMM iters:", result.iterations, ", residual:", result.residual,
                      ", converged:", result.converged, ", inverted:", result.inverted)
                if result.factorization_failed:
                    print("Switching to the conjugate gradient solver")
                    solver.options = options = options.with_solver('cg')
            with Timer("Output"):
                write_obj(directory + f'objs/{f:06d}.obj', solver.embedded_positions(), faces)
        Timer_Print()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
