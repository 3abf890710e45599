"""
Skylight - Precomputed single scattering LUTs for atmospheric rendering.

Implements the single scattering pass of Eric Bruneton's Precomputed
Atmospheric Scattering: a transmittance table, then per-voxel Rayleigh and
Mie in-scattering integrated along every view ray of a 4D (r, mu, mu_s, nu)
parameterization packed into a 3D grid.
"""

__version__ = "1.0.0"

from .core import (
    AtmosphereModel,
    AtmosphereParameters,
    ConfigError,
    PrecomputedTextures,
    ScatteringGridExtents,
    SingleScatteringPrecompute,
    load_atmosphere_parameters,
    precompute_single_scattering,
)
