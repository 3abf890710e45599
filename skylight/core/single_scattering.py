"""
Skylight Single Scattering - The per-voxel single scattering kernel.

For one scattering LUT voxel the kernel maps the voxel to ray parameters,
integrates the in-scattered sunlight along the view ray with the trapezoidal
rule, stores the Rayleigh and Mie results in their output grids and returns
their luminance for the caller's accumulation.

The functions operate on scalars or on equally shaped arrays, so the
dispatcher can evaluate a block of voxels with the very same code.
"""

from typing import Tuple

import numpy as np

from .constants import SAMPLE_COUNT
from .coordinates import ScatterCoord, ScatteringGridExtents, map_voxel_to_scatter_coord
from .geometry import (
    clamp_cosine,
    clamp_radius,
    distance_to_nearest_atmosphere_boundary,
    get_profile_density,
)
from .parameters import AtmosphereParameters
from .textures import VoxelGrid


def compute_single_scattering_integrand(
    atmosphere: AtmosphereParameters,
    transmittance_table,
    coord: ScatterCoord,
    d,
    ray_r_mu_intersects_ground,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Density-weighted transmittance at distance d along the view ray.

    Returns (rayleigh, mie); the scattering coefficients and solar irradiance
    are applied by the integrator.
    """
    r, mu, mu_s, nu = coord
    r_d = clamp_radius(atmosphere, np.sqrt(d * d + 2.0 * r * mu * d + r * r))
    mu_s_d = clamp_cosine((r * mu_s + d * nu) / r_d)

    transmittance = (
        transmittance_table.get_transmittance(r, mu, d, ray_r_mu_intersects_ground) *
        transmittance_table.get_transmittance_to_sun(r_d, mu_s_d)
    )

    altitude = r_d - atmosphere.bottom_radius
    rayleigh = transmittance * get_profile_density(atmosphere.rayleigh_density, altitude)[..., np.newaxis]
    mie = transmittance * get_profile_density(atmosphere.mie_density, altitude)[..., np.newaxis]
    return rayleigh, mie


def compute_single_scattering(
    atmosphere: AtmosphereParameters,
    transmittance_table,
    coord: ScatterCoord,
    ray_r_mu_intersects_ground,
    sample_count: int = SAMPLE_COUNT,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Single scattering along the view ray from the camera to the nearest
    atmosphere boundary (ground or top).

    Uses sample_count intervals, i.e. sample_count + 1 integrand evaluations
    with half weight at both end points.

    Returns:
        (rayleigh, mie) radiance, each of shape (..., 4)
    """
    if sample_count < 1:
        raise ValueError(f"sample_count must be positive, got {sample_count}")
    coord.check(atmosphere)

    r, mu = coord.r, coord.mu
    dx = distance_to_nearest_atmosphere_boundary(
        atmosphere, r, mu, ray_r_mu_intersects_ground) / sample_count

    rayleigh_sum = 0.0
    mie_sum = 0.0
    for i in range(sample_count + 1):
        d_i = i * dx
        rayleigh_i, mie_i = compute_single_scattering_integrand(
            atmosphere, transmittance_table, coord, d_i, ray_r_mu_intersects_ground)
        weight_i = 0.5 if i == 0 or i == sample_count else 1.0
        rayleigh_sum = rayleigh_sum + rayleigh_i * weight_i
        mie_sum = mie_sum + mie_i * weight_i

    dx = np.asarray(dx)[..., np.newaxis]
    rayleigh = rayleigh_sum * dx * atmosphere.solar_irradiance * atmosphere.rayleigh_scattering
    mie = mie_sum * dx * atmosphere.solar_irradiance * atmosphere.mie_scattering
    return rayleigh, mie


def radiance_to_luminance(rad_to_lum: np.ndarray, radiance: np.ndarray) -> np.ndarray:
    """Project (..., 4) radiance through the 4x4 matrix, keeping three components."""
    return (np.asarray(radiance) @ np.asarray(rad_to_lum).T)[..., :3]


def run_single_scattering_kernel(
    voxel,
    rad_to_lum: np.ndarray,
    atmosphere: AtmosphereParameters,
    transmittance_table,
    delta_rayleigh_lut: VoxelGrid,
    delta_mie_lut: VoxelGrid,
    extents: ScatteringGridExtents = ScatteringGridExtents(),
    sample_count: int = SAMPLE_COUNT,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute single scattering for one (x, y, z) voxel.

    Writes the raw 4-channel Rayleigh and Mie values to their grids and
    returns (scattering, single_mie_scattering) as 3-component luminance.
    """
    coord, ray_r_mu_intersects_ground = map_voxel_to_scatter_coord(voxel, atmosphere, extents)
    rayleigh, mie = compute_single_scattering(
        atmosphere, transmittance_table, coord, ray_r_mu_intersects_ground, sample_count)

    delta_rayleigh_lut.write(voxel, rayleigh)
    delta_mie_lut.write(voxel, mie)

    return radiance_to_luminance(rad_to_lum, rayleigh), radiance_to_luminance(rad_to_lum, mie)


def run_single_scattering_block(
    voxels: np.ndarray,
    rad_to_lum: np.ndarray,
    atmosphere: AtmosphereParameters,
    transmittance_table,
    delta_rayleigh_lut: VoxelGrid,
    delta_mie_lut: VoxelGrid,
    extents: ScatteringGridExtents = ScatteringGridExtents(),
    sample_count: int = SAMPLE_COUNT,
) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorized run_single_scattering_kernel over an (n, 3) array of distinct voxels."""
    voxels = np.asarray(voxels)
    if voxels.ndim != 2 or voxels.shape[1] != 3:
        raise ValueError(f"Expected an (n, 3) voxel array, got shape {voxels.shape}")

    coord, ray_r_mu_intersects_ground = map_voxel_to_scatter_coord(voxels, atmosphere, extents)
    rayleigh, mie = compute_single_scattering(
        atmosphere, transmittance_table, coord, ray_r_mu_intersects_ground, sample_count)

    delta_rayleigh_lut.write_block(voxels, rayleigh)
    delta_mie_lut.write_block(voxels, mie)

    return radiance_to_luminance(rad_to_lum, rayleigh), radiance_to_luminance(rad_to_lum, mie)
