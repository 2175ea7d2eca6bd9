"""SE(3) transforms on 6D poses [x, y, z, rx, ry, rz]."""
