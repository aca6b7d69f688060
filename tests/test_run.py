import os
import tempfile
import unittest

from admmpd.run import main, parse_args
from admmpd.utils.timer import Timer_Reset


class TestRun(unittest.TestCase):
    def setUp(self):
        Timer_Reset()

    def test_parse_args(self):
        args = parse_args(['cube', '--frames', '3', '--solver', 'gs', '--pin-below', '0.1'])
        self.assertEqual(args.mesh, 'cube')
        self.assertEqual(args.frames, 3)
        self.assertEqual(args.solver, 'gs')
        self.assertEqual(args.pin_below, 0.1)
        self.assertEqual(args.lattice, 0)

    def test_cube(self):
        with tempfile.TemporaryDirectory() as directory:
            self.assertEqual(main(['cube', '--frames', '2', '--output', directory, '--pin-below', '0.01']), 0)
            for f in range(3):
                self.assertTrue(os.path.exists(os.path.join(directory, 'objs', f'{f:06d}.obj')))
            with open(os.path.join(directory, 'log.txt')) as f:
                log = f.read()
            self.assertIn('Frame', log)
            self.assertIn('Time Step', log)

    def test_lattice(self):
        with tempfile.TemporaryDirectory() as directory:
            self.assertEqual(main(['cube', '--frames', '1', '--output', directory, '--lattice', '2',
                                   '--solver', 'cg']), 0)
            with open(os.path.join(directory, 'objs', '000001.obj')) as f:
                lines = f.read().splitlines()
            # the fine cube surface is written, not the lattice
            self.assertEqual(sum(line.startswith('v ') for line in lines), 64)


if __name__ == '__main__':
    unittest.main()
