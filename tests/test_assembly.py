import unittest

import numpy as np
import scipy.sparse

from admmpd.assembly import compute_matrices, constraint_jacobian, system_matrix, update_M_xbar
from admmpd.constraints import pin_constraints
from admmpd.energy import ENERGY_ARAP, ENERGY_STRAIN_LIMIT
from admmpd.errors import AssemblyError
from admmpd.mesh import generate_lattice
from admmpd.options import Options
from admmpd.reader import make_cube_mesh
from admmpd.solver import SolverData


def assemble(x, tets, options=None):
    options = Options() if options is None else options
    data = SolverData(tets=np.asarray(tets, dtype=np.int32), x=np.array(x, dtype=np.float64),
                      v=np.zeros((len(x), 3)))
    compute_matrices(options, data, data.x, data.tets)
    return data


class TestMatrices(unittest.TestCase):
    def test_system_matrix_symmetric_positive(self):
        x, tets = make_cube_mesh(3)
        data = assemble(x, tets)
        A = data.A.toarray()
        np.testing.assert_allclose(A, A.T, rtol=0, atol=1e-9 * np.abs(A).max())
        self.assertGreater(np.linalg.eigvalsh(A).min(), 0)
        # the elastic part alone is only semi-definite: rigid translations are free
        K = (data.DtW2 @ data.D).toarray()
        self.assertGreater(np.linalg.eigvalsh(K).min(), -1e-9 * np.abs(K).max())

    def test_reduction_matrix(self):
        x, tets = make_cube_mesh(3, size=0.5)
        data = assemble(x, tets)
        n_tets = len(tets)
        self.assertEqual(data.D.shape, (3 * n_tets, len(x)))
        self.assertEqual(int(data.indices[:, 1].sum()), data.D.shape[0])
        np.testing.assert_array_equal(data.indices[:, 0], 3 * np.arange(n_tets))
        # rest shape maps to identity deformation gradients
        Dx = data.D @ x
        np.testing.assert_allclose(Dx.reshape((n_tets, 3, 3)), np.tile(np.eye(3), (n_tets, 1, 1)), atol=1e-12)
        # translations are invisible to D
        np.testing.assert_allclose(data.D @ np.ones(len(x)), 0.0, atol=1e-12)
        # a linear map F shows up as F^T in every block
        F = np.array([[1.1, 0.2, 0.0], [0.0, 0.9, 0.3], [-0.1, 0.0, 1.2]])
        np.testing.assert_allclose((data.D @ (x @ F.T)).reshape((n_tets, 3, 3)), np.tile(F.T, (n_tets, 1, 1)),
                                   atol=1e-12)

    def test_mass_conservation(self):
        options = Options(density=1000.0)
        for n in (2, 3, 4):
            x, tets = make_cube_mesh(n, size=0.5)
            data = assemble(x, tets, options)
            self.assertAlmostEqual(data.m.sum(), 1000.0 * 0.125)
            self.assertAlmostEqual(data.rest_volumes.sum(), 0.125)

    def test_lattice_mass(self):
        x, tets = make_cube_mesh(4)
        lattice = generate_lattice(x, resolution=3)
        data = assemble(lattice.lattice_x, lattice.tets, Options(density=10.0))
        self.assertAlmostEqual(data.m.sum(), 10.0 * data.rest_volumes.sum())

    def test_weights(self):
        options = Options(youngs=1e5, poisson=0.3)
        x, tets = make_cube_mesh(2)
        data = assemble(x, tets, options)
        la, mu = options.lame()
        np.testing.assert_allclose(data.weights, np.sqrt(la + 2 * mu / 3))
        np.testing.assert_array_equal(data.energy_types, ENERGY_ARAP)
        data = assemble(x, tets, Options(energy='strain_limit'))
        np.testing.assert_array_equal(data.energy_types, ENERGY_STRAIN_LIMIT)

    def test_M_xbar(self):
        options = Options(timestep=0.1, grav=(0.0, 0.0, -10.0), density=24.0)
        x = np.vstack(([0.0, 0.0, 0.0], np.eye(3)))
        data = assemble(x, [[0, 1, 2, 3]], options)
        np.testing.assert_allclose(data.m, 1.0)
        data.x_start = x
        data.v = np.tile([1.0, 0.0, 0.0], (4, 1))
        update_M_xbar(options, data)
        np.testing.assert_allclose(data.M_xbar, x + [0.1, 0.0, -0.1])


class TestAssemblyErrors(unittest.TestCase):
    def test_degenerate_tet(self):
        x = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 1.0, 0.0]])
        with self.assertRaises(AssemblyError):
            assemble(x, [[0, 1, 2, 3]])

    def test_inverted_tet(self):
        x = np.vstack(([0.0, 0.0, 0.0], np.eye(3)))
        with self.assertRaises(AssemblyError):
            assemble(x, [[0, 2, 1, 3]])

    def test_unreferenced_vertex(self):
        x = np.vstack(([0.0, 0.0, 0.0], np.eye(3), [[5.0, 5.0, 5.0]]))
        with self.assertRaises(AssemblyError):
            assemble(x, [[0, 1, 2, 3]])

    def test_unknown_energy(self):
        from admmpd.energy import append_energies
        x = np.vstack(([0.0, 0.0, 0.0], np.eye(3)))
        data = SolverData(tets=np.array([[0, 1, 2, 3]]), x=x, v=np.zeros_like(x))
        with self.assertRaises(AssemblyError):
            append_energies(Options(), x, data.tets, data, energy='spring')


class TestConstraints(unittest.TestCase):
    def test_jacobian_interleaves_axes(self):
        K = [scipy.sparse.csr_matrix(np.array([[1.0, 0.0], [0.0, 0.0]])),
             scipy.sparse.csr_matrix(np.array([[0.0, 2.0], [0.0, 0.0]])),
             scipy.sparse.csr_matrix(np.array([[0.0, 0.0], [3.0, 0.0]]))]
        J = constraint_jacobian(K, 2).toarray()
        expected = np.zeros((2, 6))
        expected[0, 0] = 1.0
        expected[0, 4] = 2.0
        expected[1, 2] = 3.0
        np.testing.assert_array_equal(J, expected)
        with self.assertRaises(ValueError):
            constraint_jacobian(K[:2], 2)

    def test_pins(self):
        K, l = pin_constraints(5, [1, 4], [[0.0, 1.0, 2.0], [3.0, 4.0, 5.0]])
        J = constraint_jacobian(K, 5)
        x = np.arange(15.0).reshape((5, 3))
        np.testing.assert_array_equal(J @ x.reshape(-1), np.concatenate((x[1], x[4])))
        np.testing.assert_array_equal(l, np.arange(6.0))
        with self.assertRaises(ValueError):
            pin_constraints(5, [5], [[0.0, 0.0, 0.0]])

    def test_embedded_pins(self):
        x, tets = make_cube_mesh(3)
        lattice = generate_lattice(x, resolution=2)
        K, l = pin_constraints(len(lattice.lattice_x), [0, 13], x[[0, 13]], lattice)
        J = constraint_jacobian(K, len(lattice.lattice_x))
        np.testing.assert_allclose(J @ lattice.lattice_x.reshape(-1), x[[0, 13]].reshape(-1), atol=1e-12)

    def test_system_matrix_adds_constraints(self):
        x, tets = make_cube_mesh(2)
        data = assemble(x, tets)
        K, _ = pin_constraints(len(x), [0], [[0.0, 0.0, 0.0]])
        J = constraint_jacobian(K, len(x))
        data.KtK = (J.T @ J).tocsr()
        A3 = system_matrix(data, 7.0).toarray()
        base = np.kron(data.A.toarray(), np.eye(3))
        np.testing.assert_allclose(A3 - base, 7.0 * data.KtK.toarray(), atol=1e-9)
        self.assertAlmostEqual(A3[0, 0] - base[0, 0], 7.0)


if __name__ == '__main__':
    unittest.main()
