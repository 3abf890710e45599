"""
Skylight Textures - Read-only sampled tables and write-only voxel grids.

These replace implicit texture/image bindings: the kernel receives them as
explicit arguments and only ever samples a SampledTable or writes a VoxelGrid.
"""

from typing import Tuple

import numpy as np

from .constants import NUM_CHANNELS


def get_texture_coord_from_unit_range(x, texture_size: int):
    """Map [0, 1] onto texel centres, avoiding extrapolation at the borders."""
    return 0.5 / texture_size + x * (1.0 - 1.0 / texture_size)


def get_unit_range_from_texture_coord(u, texture_size: int):
    """Inverse of get_texture_coord_from_unit_range."""
    return (u - 0.5 / texture_size) / (1.0 - 1.0 / texture_size)


class SampledTable:
    """
    Read-only 2D table sampled with normalized coordinates.

    Sampling is bilinear between texel centres with clamp-to-edge addressing,
    matching a GPU linear sampler. u runs along the width, v along the height.
    """

    def __init__(self, data: np.ndarray):
        data = np.array(data, dtype=np.float32)
        if data.ndim != 3:
            raise ValueError(f"Expected (height, width, channels) data, got shape {data.shape}")
        data.setflags(write=False)
        self._data = data

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def width(self) -> int:
        return self._data.shape[1]

    @property
    def height(self) -> int:
        return self._data.shape[0]

    @property
    def channels(self) -> int:
        return self._data.shape[2]

    def sample(self, u, v) -> np.ndarray:
        """Bilinearly sample the table; returns shape broadcast(u, v) + (channels,)."""
        u, v = np.broadcast_arrays(np.asarray(u, dtype=np.float64), np.asarray(v, dtype=np.float64))

        x = u * self.width - 0.5
        y = v * self.height - 0.5
        x0 = np.floor(x)
        y0 = np.floor(y)
        fx = (x - x0)[..., np.newaxis]
        fy = (y - y0)[..., np.newaxis]

        i0 = np.clip(x0, 0, self.width - 1).astype(np.intp)
        i1 = np.clip(x0 + 1, 0, self.width - 1).astype(np.intp)
        j0 = np.clip(y0, 0, self.height - 1).astype(np.intp)
        j1 = np.clip(y0 + 1, 0, self.height - 1).astype(np.intp)

        data = self._data
        return (
            data[j0, i0] * (1.0 - fx) * (1.0 - fy) +
            data[j0, i1] * fx * (1.0 - fy) +
            data[j1, i0] * (1.0 - fx) * fy +
            data[j1, i1] * fx * fy
        )


class VoxelGrid:
    """
    Write-only 3D storage target addressed by integer (x, y, z) voxels.

    Storage layout is (depth, height, width, channels), so voxel (x, y, z)
    lands in ``data[z, y, x]``. Each voxel may be written exactly once.
    """

    def __init__(self, shape: Tuple[int, int, int], channels: int = NUM_CHANNELS,
                 dtype=np.float32):
        depth, height, width = shape
        self._data = np.zeros((depth, height, width, channels), dtype=dtype)
        self._written = np.zeros((depth, height, width), dtype=bool)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self._written.shape

    @property
    def channels(self) -> int:
        return self._data.shape[3]

    @property
    def written_count(self) -> int:
        return int(np.count_nonzero(self._written))

    @property
    def is_complete(self) -> bool:
        return bool(self._written.all())

    def _indices(self, voxels: np.ndarray):
        x, y, z = voxels[..., 0], voxels[..., 1], voxels[..., 2]
        depth, height, width = self.shape
        if (np.any(x < 0) or np.any(x >= width) or np.any(y < 0) or np.any(y >= height)
                or np.any(z < 0) or np.any(z >= depth)):
            raise IndexError(f"Voxel outside grid of shape (width={width}, height={height}, depth={depth})")
        return z, y, x

    def write(self, voxel, value) -> None:
        """Store one channel vector at an (x, y, z) voxel."""
        self.write_block(np.asarray(voxel, dtype=np.intp).reshape(1, 3),
                         np.asarray(value).reshape(1, -1))

    def write_block(self, voxels, values) -> None:
        """Store a block of (n, channels) values at an (n, 3) array of distinct voxels."""
        voxels = np.asarray(voxels, dtype=np.intp)
        index = self._indices(voxels)
        if np.any(self._written[index]):
            raise RuntimeError("Voxel written twice in the same pass")
        self._data[index] = values
        self._written[index] = True

    def to_array(self) -> np.ndarray:
        """Copy of the stored values; only meaningful once the pass has completed."""
        return self._data.copy()
