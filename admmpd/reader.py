import meshio
import numpy as np
from scipy.spatial.transform import Rotation

from admmpd.errors import AssemblyError
from admmpd.mesh import CELL_TETS


def read_msh(filename):
    # single block gmsh 4 files: "tag x y z" node lines, "tag v0 v1 v2 v3" tet lines
    with open(filename, 'r') as f:
        lines = f.readlines()
    lines = [line.rstrip('\n') for line in lines]
    raw_particles = lines[lines.index('$Nodes') + 3:lines.index('$EndNodes')]
    raw_elements = lines[lines.index('$Elements') + 3:lines.index('$EndElements')]
    mesh_particles = np.array(list(map(lambda x: list(map(float, x.split()[1:])), raw_particles)))
    mesh_elements = np.array(list(map(lambda x: list(map(int, x.split()[1:])), raw_elements))) - 1
    return mesh_particles.reshape((-1, 3)), mesh_elements.reshape((-1, 4)).astype(np.int32)


def make_cube_mesh(n=4, size=1.0, origin=None):
    """n^3 grid vertices spaced size / (n - 1), six tets per cell."""
    if n < 2:
        raise AssemblyError(f'a cube mesh needs at least 2 vertices per side, got {n}')
    origin = np.zeros(3) if origin is None else np.array(origin, dtype=np.float64)
    h = size / (n - 1)
    ijk = np.stack(np.meshgrid(np.arange(n), np.arange(n), np.arange(n), indexing='ij'), axis=-1).reshape((-1, 3))
    new_particles = origin + ijk * h
    m = n - 1
    cells = np.stack(np.meshgrid(np.arange(m), np.arange(m), np.arange(m), indexing='ij'), axis=-1).reshape((-1, 3))
    f = np.zeros((len(cells), 8), dtype=np.int32)
    for c in range(8):
        i = cells[:, 0] + (c & 1)
        j = cells[:, 1] + ((c >> 1) & 1)
        k = cells[:, 2] + ((c >> 2) & 1)
        f[:, c] = i * n * n + j * n + k
    new_elements = f[:, CELL_TETS].reshape((-1, 4))
    return new_particles, new_elements


def load_tet_mesh(filename, translation=None, rotation=None, scale=None):
    """
    Tet mesh from 'cube', a gmsh .msh file or anything meshio reads.
    rotation is a rotation vector in degrees, applied after scale.
    """
    translation = np.zeros(3) if translation is None else np.array(translation, dtype=np.float64)
    rotation = np.zeros(3) if rotation is None else np.array(rotation, dtype=np.float64)
    scale = np.ones(3) if scale is None else np.array(scale, dtype=np.float64)
    if filename == 'cube':
        new_particles, new_elements = make_cube_mesh()
    elif filename[-4:] == '.msh':
        new_particles, new_elements = read_msh(filename)
    else:
        mesh = meshio.read(filename)
        blocks = [cell.data for cell in mesh.cells if cell.type == 'tetra']
        if not blocks:
            raise AssemblyError(f'{filename} holds no tetra cells')
        new_particles = np.asarray(mesh.points[:, :3], dtype=np.float64)
        new_elements = np.vstack(blocks).astype(np.int32)
    rotation_matrix = Rotation.from_rotvec(rotation * np.pi / 180.).as_matrix()
    new_particles = (new_particles * scale) @ rotation_matrix.T + translation
    return new_particles, new_elements


def write_obj(filename, x, faces):
    with open(filename, 'w') as f:
        for p in x:
            f.write('v %.6f %.6f %.6f\n' % (p[0], p[1], p[2]))
        for t in faces:
            f.write('f %d %d %d\n' % (t[0] + 1, t[1] + 1, t[2] + 1))
