import unittest

import numpy as np
import scipy.sparse

from admmpd.assembly import constraint_jacobian, system_matrix
from admmpd.constraints import pin_constraints
from admmpd.math.graph_tools import greedy_coloring, validate_coloring, vertex_adjacency
from admmpd.mesh import generate_lattice
from admmpd.reader import make_cube_mesh

from tests.test_assembly import assemble


def assert_independent(testcase, A3, groups):
    """No two vertices of a color may share a nonzero 3x3 block of A3."""
    coo = scipy.sparse.coo_matrix(A3)
    keep = coo.data != 0
    vi, vj = coo.row[keep] // 3, coo.col[keep] // 3
    colors = np.empty(A3.shape[0] // 3, dtype=np.int64)
    for c, group in enumerate(groups):
        colors[group] = c
    off = vi != vj
    testcase.assertFalse(np.any(colors[vi[off]] == colors[vj[off]]))


class TestColoring(unittest.TestCase):
    def test_colors_partition_vertices(self):
        x, tets = make_cube_mesh(4)
        data = assemble(x, tets)
        adj = vertex_adjacency(len(x), data.A)
        groups = greedy_coloring(adj)
        self.assertTrue(validate_coloring(adj, groups))
        np.testing.assert_array_equal(np.sort(np.concatenate(groups)), np.arange(len(x)))
        assert_independent(self, system_matrix(data, 0.0), groups)
        self.assertLess(len(groups), len(x))

    def test_colors_with_constraints(self):
        x, tets = make_cube_mesh(3)
        lattice = generate_lattice(x, resolution=2)
        data = assemble(lattice.lattice_x, lattice.tets)
        n = len(lattice.lattice_x)
        # embedded pins couple the four corners of their lattice tet
        K, _ = pin_constraints(n, np.arange(len(x)), x, lattice)
        J = constraint_jacobian(K, n)
        data.KtK = (J.T @ J).tocsr()
        adj = vertex_adjacency(n, data.A, data.KtK)
        groups = greedy_coloring(adj)
        validate_coloring(adj, groups)
        assert_independent(self, system_matrix(data, 1e3), groups)

    def test_validate_rejects_clash(self):
        adj = vertex_adjacency(3, scipy.sparse.csr_matrix(np.array([[1.0, 1.0, 0.0],
                                                                    [1.0, 1.0, 1.0],
                                                                    [0.0, 1.0, 1.0]])))
        self.assertTrue(validate_coloring(adj, [np.array([0, 2]), np.array([1])]))
        with self.assertRaises(RuntimeError):
            validate_coloring(adj, [np.array([0, 1]), np.array([2])])
        with self.assertRaises(RuntimeError):
            validate_coloring(adj, [np.array([0, 2])])

    def test_adjacency_collapses_dofs(self):
        A3 = scipy.sparse.kron(scipy.sparse.csr_matrix(np.array([[2.0, -1.0], [-1.0, 2.0]])), np.eye(3))
        adj = vertex_adjacency(2, A3)
        np.testing.assert_array_equal(adj.toarray(), [[False, True], [True, False]])


if __name__ == '__main__':
    unittest.main()
