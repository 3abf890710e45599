"""
Skylight Atmosphere Model - Orchestrates the single scattering precompute.

This module handles:
- Conversion of the atmosphere to the precompute length unit
- Transmittance and single scattering LUT precomputation
- Radiance to luminance conversion setup
- Model state management and texture I/O
"""

import sys
from typing import Optional

import numpy as np

from .constants import (
    DEFAULT_BLOCK_SIZE,
    DEFAULT_DELTA_LAMBDA,
    SAMPLE_COUNT,
    TRANSMITTANCE_SAMPLE_COUNT,
    compute_radiance_to_luminance,
    convert_spectrum_to_linear_srgb,
)
from .coordinates import ScatteringGridExtents
from .parameters import AtmosphereParameters
from .precompute import PrecomputedTextures, precompute_single_scattering


class AtmosphereModel:
    """
    Main atmosphere model class.

    Precomputes the LUTs in kilometers by default, which keeps the float32
    tables accurate for Earth-sized planets.
    """

    def __init__(
        self,
        params: Optional[AtmosphereParameters] = None,
        extents: Optional[ScatteringGridExtents] = None,
        length_unit_in_meters: float = 1000.0,
    ):
        """
        Initialize the atmosphere model.

        Args:
            params: Atmosphere parameters. Uses Earth defaults if None.
            extents: Scattering LUT resolution. Uses the default resolution if None.
            length_unit_in_meters: Length unit of the precomputed tables
        """
        self.params = params or AtmosphereParameters.earth_default()
        self.extents = extents or ScatteringGridExtents()
        self.length_unit_in_meters = length_unit_in_meters
        self.textures: Optional[PrecomputedTextures] = None
        self._is_initialized = False

        self.rad_to_lum = compute_radiance_to_luminance(self.params.wavelengths, DEFAULT_DELTA_LAMBDA)

    @property
    def is_initialized(self) -> bool:
        """Check if LUTs have been precomputed."""
        return self._is_initialized

    @property
    def solar_irradiance_rgb(self) -> np.ndarray:
        """Solar irradiance converted to linear sRGB."""
        return convert_spectrum_to_linear_srgb(self.params.wavelengths, self.params.solar_irradiance)

    def init(
        self,
        n_jobs: int = 1,
        block_size: int = DEFAULT_BLOCK_SIZE,
        sample_count: int = SAMPLE_COUNT,
        transmittance_sample_count: int = TRANSMITTANCE_SAMPLE_COUNT,
        progress_callback=None,
    ) -> None:
        """
        Precompute the atmosphere LUT textures.

        Args:
            n_jobs: Number of worker threads (-1 for all cores)
            block_size: Voxels evaluated per task
            sample_count: Trapezoidal intervals along each view ray
            transmittance_sample_count: Trapezoidal intervals for the transmittance LUT
            progress_callback: Optional callback(progress, message) for progress updates
        """
        if progress_callback:
            progress_callback(0.0, "Initializing atmosphere model...")

        atmosphere = self.params.to_length_unit(self.length_unit_in_meters)
        print(f"[Skylight] Precomputing LUTs: bottom={atmosphere.bottom_radius:.1f}, "
              f"top={atmosphere.top_radius:.1f} (unit={self.length_unit_in_meters:g} m), "
              f"grid={self.extents.shape}")
        sys.stdout.flush()

        self.textures = precompute_single_scattering(
            atmosphere,
            extents=self.extents,
            n_jobs=n_jobs,
            block_size=block_size,
            sample_count=sample_count,
            transmittance_sample_count=transmittance_sample_count,
            rad_to_lum=self.rad_to_lum,
            progress_callback=progress_callback,
        )
        self._is_initialized = True

        if progress_callback:
            progress_callback(1.0, "Precomputation complete")

    def save_textures(self, filepath: str) -> None:
        """Save precomputed textures to a file (NumPy format)."""
        from ..utils.exr import save_textures

        if not self._is_initialized:
            raise RuntimeError("Model not initialized.")
        save_textures(filepath, self.textures)

    def save_textures_exr(self, output_dir: str, half_precision: bool = False) -> None:
        """Save precomputed textures as EXR files, 3D textures tiled along the width."""
        from ..utils.exr import save_textures_exr

        if not self._is_initialized:
            raise RuntimeError("Model not initialized.")
        save_textures_exr(output_dir, self.textures, half_precision)

    def load_textures(self, filepath: str) -> None:
        """Load precomputed textures from a file."""
        from ..utils.exr import load_textures

        textures = load_textures(filepath)
        if textures.scattering.shape[:3] != self.extents.shape:
            raise ValueError(f"Texture grid {textures.scattering.shape[:3]} does not match "
                             f"model grid {self.extents.shape}")
        self.textures = textures
        self._is_initialized = True
