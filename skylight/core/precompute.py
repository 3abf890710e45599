"""
Skylight Precompute - Data-parallel dispatch of the single scattering kernel.

The flattened voxel index space is split into disjoint blocks. Each block is
an independent task evaluated on a joblib thread pool: tasks read only the
immutable atmosphere and transmittance table and write disjoint voxels, so no
locking is needed. Consuming every task result is the barrier before the
outputs are read.
"""

import sys
from dataclasses import dataclass
from typing import Optional

import numpy as np
from joblib import Parallel, delayed

from .constants import (
    DEFAULT_BLOCK_SIZE,
    DEFAULT_DELTA_LAMBDA,
    SAMPLE_COUNT,
    TRANSMITTANCE_TEXTURE_WIDTH,
    TRANSMITTANCE_TEXTURE_HEIGHT,
    TRANSMITTANCE_SAMPLE_COUNT,
    compute_radiance_to_luminance,
)
from .coordinates import ScatteringGridExtents
from .parameters import AtmosphereParameters
from .single_scattering import run_single_scattering_block
from .textures import VoxelGrid
from .transmittance import TransmittanceTable


@dataclass
class PrecomputedTextures:
    """Container for precomputed LUT textures."""
    transmittance: np.ndarray          # Shape: (H, W, 4)
    delta_rayleigh: np.ndarray         # Shape: (D, H, W, 4)
    delta_mie: np.ndarray              # Shape: (D, H, W, 4)
    scattering: np.ndarray             # Shape: (D, H, W, 3) - accumulated luminance
    single_mie_scattering: np.ndarray  # Shape: (D, H, W, 3) - accumulated luminance


class SingleScatteringPrecompute:
    """
    Runs the single scattering kernel over every voxel of the scattering LUT.

    The accumulation buffers are running sums owned by the dispatcher: each
    call to precompute() adds its luminance on top of the previous ones.
    """

    def __init__(
        self,
        atmosphere: AtmosphereParameters,
        extents: Optional[ScatteringGridExtents] = None,
        n_jobs: int = 1,
        block_size: int = DEFAULT_BLOCK_SIZE,
        sample_count: int = SAMPLE_COUNT,
    ):
        """
        Args:
            atmosphere: Atmosphere parameters, in the unit of the transmittance table
            extents: Scattering LUT resolution. Uses the default resolution if None.
            n_jobs: Number of worker threads (-1 for all cores)
            block_size: Voxels evaluated per task
            sample_count: Trapezoidal intervals along each view ray
        """
        if block_size < 1:
            raise ValueError(f"block_size must be positive, got {block_size}")
        if sample_count < 1:
            raise ValueError(f"sample_count must be positive, got {sample_count}")

        self.atmosphere = atmosphere
        self.extents = extents or ScatteringGridExtents()
        self.n_jobs = n_jobs
        self.block_size = block_size
        self.sample_count = sample_count

        self.scattering = np.zeros(self.extents.shape + (3,), dtype=np.float32)
        self.single_mie_scattering = np.zeros_like(self.scattering)

    def _run_block(self, start, stop, rad_to_lum, transmittance_table, delta_rayleigh, delta_mie):
        voxels = self.extents.voxels_from_indices(np.arange(start, stop))
        return run_single_scattering_block(
            voxels, rad_to_lum, self.atmosphere, transmittance_table,
            delta_rayleigh, delta_mie, self.extents, self.sample_count)

    def precompute(self, transmittance_table, rad_to_lum: np.ndarray,
                   progress_callback=None) -> PrecomputedTextures:
        """
        Evaluate the kernel for every voxel and accumulate the luminance.

        Args:
            transmittance_table: Read-only transmittance oracle
            rad_to_lum: 4x4 radiance to luminance matrix
            progress_callback: Optional callback(progress, message) for progress updates
        """
        rad_to_lum = np.asarray(rad_to_lum, dtype=np.float64)
        if rad_to_lum.shape != (4, 4):
            raise ValueError(f"rad_to_lum must be 4x4, got shape {rad_to_lum.shape}")

        delta_rayleigh = VoxelGrid(self.extents.shape)
        delta_mie = VoxelGrid(self.extents.shape)
        blocks = list(self.extents.iter_blocks(self.block_size))

        print(f"[Skylight] Single scattering: {self.extents.voxel_count} voxels in "
              f"{len(blocks)} blocks, n_jobs={self.n_jobs}")
        sys.stdout.flush()

        results = Parallel(n_jobs=self.n_jobs, prefer="threads", return_as="generator")(
            delayed(self._run_block)(start, stop, rad_to_lum, transmittance_table,
                                     delta_rayleigh, delta_mie)
            for start, stop in blocks
        )

        # Flat views share memory with the (D, H, W, 3) buffers
        scattering = self.scattering.reshape(-1, 3)
        single_mie = self.single_mie_scattering.reshape(-1, 3)
        for n, ((start, stop), (block_scattering, block_mie)) in enumerate(zip(blocks, results)):
            scattering[start:stop] += block_scattering
            single_mie[start:stop] += block_mie
            if progress_callback:
                progress_callback((n + 1) / len(blocks),
                                  f"Single scattering block {n + 1}/{len(blocks)}")

        if not (delta_rayleigh.is_complete and delta_mie.is_complete):
            raise RuntimeError("Single scattering pass finished with unwritten voxels")

        print(f"[Skylight] Single scattering done, max scattering: {self.scattering.max():.6g}")
        sys.stdout.flush()

        transmittance = getattr(transmittance_table, 'data', None)
        return PrecomputedTextures(
            transmittance=None if transmittance is None else np.array(transmittance),
            delta_rayleigh=delta_rayleigh.to_array(),
            delta_mie=delta_mie.to_array(),
            scattering=self.scattering.copy(),
            single_mie_scattering=self.single_mie_scattering.copy(),
        )


def precompute_single_scattering(
    atmosphere: AtmosphereParameters,
    extents: Optional[ScatteringGridExtents] = None,
    n_jobs: int = 1,
    block_size: int = DEFAULT_BLOCK_SIZE,
    sample_count: int = SAMPLE_COUNT,
    transmittance_width: int = TRANSMITTANCE_TEXTURE_WIDTH,
    transmittance_height: int = TRANSMITTANCE_TEXTURE_HEIGHT,
    transmittance_sample_count: int = TRANSMITTANCE_SAMPLE_COUNT,
    rad_to_lum: Optional[np.ndarray] = None,
    progress_callback=None,
) -> PrecomputedTextures:
    """
    Build the transmittance table, then run one single scattering pass.

    rad_to_lum defaults to the matrix derived from the atmosphere wavelengths.
    """
    if progress_callback:
        progress_callback(0.0, "Computing transmittance LUT...")
    print(f"[Skylight] Transmittance: {transmittance_width}x{transmittance_height}, "
          f"{transmittance_sample_count} samples")
    sys.stdout.flush()
    table = TransmittanceTable.compute(
        atmosphere, transmittance_width, transmittance_height, transmittance_sample_count)
    print(f"[Skylight] Transmittance done, max: {table.data.max():.4f}, min: {table.data.min():.6f}")
    sys.stdout.flush()

    if rad_to_lum is None:
        rad_to_lum = compute_radiance_to_luminance(atmosphere.wavelengths, DEFAULT_DELTA_LAMBDA)

    def scattering_progress(progress, message):
        progress_callback(0.1 + 0.9 * progress, message)

    dispatcher = SingleScatteringPrecompute(atmosphere, extents, n_jobs, block_size, sample_count)
    return dispatcher.precompute(
        table, rad_to_lum, scattering_progress if progress_callback else None)
