"""
Skylight Coordinates - Mapping between scattering LUT voxels and ray parameters.

The 4D scattering function of (r, mu, mu_s, nu) is stored in a 3D grid. The
parameterization concentrates samples near the horizon and near the ground:

- r through rho = sqrt(r^2 - bottom^2), the distance to the horizon;
- mu split into a ground half and a sky half of the grid, each mapped through
  the distance to the boundary the ray hits;
- mu_s through the distance to the top boundary, relative to mu_s_min;
- nu linearly, packed with mu_s along the grid width.
"""

from dataclasses import dataclass
from typing import Iterator, Tuple

import numpy as np

from .constants import (
    SCATTERING_TEXTURE_NU_SIZE,
    SCATTERING_TEXTURE_MU_S_SIZE,
    SCATTERING_TEXTURE_MU_SIZE,
    SCATTERING_TEXTURE_R_SIZE,
)
from .geometry import clamp_cosine, clamp_radius, distance_to_top_atmosphere_boundary, safe_sqrt
from .parameters import AtmosphereParameters
from .textures import get_texture_coord_from_unit_range, get_unit_range_from_texture_coord


@dataclass(frozen=True)
class ScatteringGridExtents:
    """Resolution of the scattering LUT along each of its four parameters."""
    nu_size: int = SCATTERING_TEXTURE_NU_SIZE
    mu_s_size: int = SCATTERING_TEXTURE_MU_S_SIZE
    mu_size: int = SCATTERING_TEXTURE_MU_SIZE
    r_size: int = SCATTERING_TEXTURE_R_SIZE

    def __post_init__(self):
        if self.nu_size < 2 or self.mu_s_size < 2 or self.r_size < 2:
            raise ValueError(f"Grid sizes must be at least 2, got {self}")
        if self.mu_size < 4 or self.mu_size % 2:
            raise ValueError(f"mu_size must be even and at least 4, got {self.mu_size}")

    @property
    def width(self) -> int:
        return self.nu_size * self.mu_s_size

    @property
    def height(self) -> int:
        return self.mu_size

    @property
    def depth(self) -> int:
        return self.r_size

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Grid shape as (depth, height, width)."""
        return (self.depth, self.height, self.width)

    @property
    def voxel_count(self) -> int:
        return self.width * self.height * self.depth

    def voxels_from_indices(self, indices) -> np.ndarray:
        """Convert flattened indices into an (n, 3) array of (x, y, z) voxels."""
        z, y, x = np.unravel_index(np.asarray(indices, dtype=np.intp), self.shape)
        return np.stack([x, y, z], axis=-1)

    def iter_blocks(self, block_size: int) -> Iterator[Tuple[int, int]]:
        """Split the flattened voxel index space into [start, stop) ranges."""
        if block_size < 1:
            raise ValueError(f"block_size must be positive, got {block_size}")
        for start in range(0, self.voxel_count, block_size):
            yield start, min(start + block_size, self.voxel_count)


@dataclass(frozen=True)
class ScatterCoord:
    """
    Ray parameters of one scattering LUT entry.

    r is the distance from the planet center, mu the cosine of the view zenith
    angle, mu_s the cosine of the sun zenith angle and nu the cosine of the
    angle between view and sun directions. Fields may also be equally shaped
    arrays describing a block of entries.
    """
    r: float
    mu: float
    mu_s: float
    nu: float

    def __iter__(self):
        return iter((self.r, self.mu, self.mu_s, self.nu))

    def check(self, atmosphere: AtmosphereParameters) -> None:
        """Debug-only range checks (stripped under ``python -O``)."""
        assert np.all(self.r >= atmosphere.bottom_radius) and np.all(self.r <= atmosphere.top_radius), \
            "r outside [bottom_radius, top_radius]"
        assert np.all(np.abs(self.mu) <= 1.0), "mu outside [-1, 1]"
        assert np.all(np.abs(self.mu_s) <= 1.0), "mu_s outside [-1, 1]"
        assert np.all(np.abs(self.nu) <= 1.0), "nu outside [-1, 1]"


def get_scattering_texture_uvwz(
    atmosphere: AtmosphereParameters, r, mu, mu_s, nu, ray_r_mu_intersects_ground,
    extents: ScatteringGridExtents = ScatteringGridExtents(),
):
    """Map ray parameters to normalized (u_nu, u_mu_s, u_mu, u_r) coordinates."""
    bottom = atmosphere.bottom_radius
    top = atmosphere.top_radius
    H = np.sqrt(top * top - bottom * bottom)
    rho = safe_sqrt(r * r - bottom * bottom)
    u_r = get_texture_coord_from_unit_range(rho / H, extents.r_size)

    # Discriminant of the quadratic equation for the intersections of the ray
    # (r, mu) with the ground
    r_mu = r * mu
    discriminant = r_mu * r_mu - r * r + bottom * bottom

    # Ground half: distance to the ground, against its [d_min, d_max] range
    d = -r_mu - safe_sqrt(discriminant)
    d_min = r - bottom
    d_max = rho
    span = d_max - d_min
    x_ground = np.where(span > 0.0, (d - d_min) / np.where(span > 0.0, span, 1.0), 0.0)
    u_mu_ground = 0.5 - 0.5 * get_texture_coord_from_unit_range(x_ground, extents.mu_size // 2)

    # Sky half: distance to the top atmosphere boundary
    d = -r_mu + safe_sqrt(discriminant + H * H)
    d_min = top - r
    d_max = rho + H
    x_sky = (d - d_min) / (d_max - d_min)
    u_mu_sky = 0.5 + 0.5 * get_texture_coord_from_unit_range(x_sky, extents.mu_size // 2)

    u_mu = np.where(ray_r_mu_intersects_ground, u_mu_ground, u_mu_sky)

    d = distance_to_top_atmosphere_boundary(atmosphere, bottom, mu_s)
    d_min = top - bottom
    d_max = H
    a = (d - d_min) / (d_max - d_min)
    D = distance_to_top_atmosphere_boundary(atmosphere, bottom, atmosphere.mu_s_min)
    A = (D - d_min) / (d_max - d_min)
    # An ad-hoc function equal to 0 for mu_s = mu_s_min (because then d = D
    # and thus a = A), equal to 1 for mu_s = 1 (because then d = d_min and
    # thus a = 0), and with a large slope around mu_s = 0
    u_mu_s = get_texture_coord_from_unit_range(
        np.maximum(1.0 - a / A, 0.0) / (1.0 + a), extents.mu_s_size)

    u_nu = (nu + 1.0) / 2.0
    return u_nu, u_mu_s, u_mu, u_r


def get_r_mu_mu_s_nu_from_scattering_texture_uvwz(
    atmosphere: AtmosphereParameters, u_nu, u_mu_s, u_mu, u_r,
    extents: ScatteringGridExtents = ScatteringGridExtents(),
):
    """
    Convert normalized scattering coordinates to physical parameters.
    Returns (r, mu, mu_s, nu, ray_r_mu_intersects_ground).
    """
    bottom = atmosphere.bottom_radius
    top = atmosphere.top_radius
    H = np.sqrt(top * top - bottom * bottom)

    rho = H * get_unit_range_from_texture_coord(u_r, extents.r_size)
    # sqrt can round one ulp past the top boundary on the last slice
    r = clamp_radius(atmosphere, np.sqrt(rho * rho + bottom * bottom))

    ray_r_mu_intersects_ground = u_mu < 0.5

    # Rays hitting the ground: distance to the ground in [r - bottom, rho]
    d_min = r - bottom
    d_max = rho
    d = d_min + (d_max - d_min) * get_unit_range_from_texture_coord(
        1.0 - 2.0 * u_mu, extents.mu_size // 2)
    safe_d = np.where(d == 0.0, 1.0, d)
    mu_ground = np.where(d == 0.0, -1.0, -(rho * rho + d * d) / (2.0 * r * safe_d))

    # Rays reaching the sky: distance to the top in [top - r, rho + H]
    d_min = top - r
    d_max = rho + H
    d = d_min + (d_max - d_min) * get_unit_range_from_texture_coord(
        2.0 * u_mu - 1.0, extents.mu_size // 2)
    safe_d = np.where(d == 0.0, 1.0, d)
    mu_sky = np.where(d == 0.0, 1.0, (H * H - rho * rho - d * d) / (2.0 * r * safe_d))

    mu = clamp_cosine(np.where(ray_r_mu_intersects_ground, mu_ground, mu_sky))

    x_mu_s = get_unit_range_from_texture_coord(u_mu_s, extents.mu_s_size)
    d_min = top - bottom
    d_max = H
    D = distance_to_top_atmosphere_boundary(atmosphere, bottom, atmosphere.mu_s_min)
    A = (D - d_min) / (d_max - d_min)
    a = (A - x_mu_s * A) / (1.0 + x_mu_s * A)
    d = d_min + np.minimum(a, A) * (d_max - d_min)
    safe_d = np.where(d == 0.0, 1.0, d)
    mu_s = clamp_cosine(np.where(d == 0.0, 1.0, (H * H - d * d) / (2.0 * bottom * safe_d)))

    nu = clamp_cosine(u_nu * 2.0 - 1.0)
    return r, mu, mu_s, nu, ray_r_mu_intersects_ground


def get_scattering_texture_uvwz_from_voxel(voxel, extents: ScatteringGridExtents = ScatteringGridExtents()):
    """
    Normalized coordinates of a voxel centre.

    nu is divided by nu_size - 1 so that the first and last nu columns hold
    exactly nu = -1 and nu = 1.
    """
    voxel = np.asarray(voxel, dtype=np.float64)
    frag = voxel + 0.5
    frag_nu = np.floor(frag[..., 0] / extents.mu_s_size)
    frag_mu_s = np.mod(frag[..., 0], extents.mu_s_size)
    return (frag_nu / (extents.nu_size - 1),
            frag_mu_s / extents.mu_s_size,
            frag[..., 1] / extents.mu_size,
            frag[..., 2] / extents.r_size)


def map_voxel_to_scatter_coord(
    voxel, atmosphere: AtmosphereParameters,
    extents: ScatteringGridExtents = ScatteringGridExtents(),
) -> Tuple[ScatterCoord, bool]:
    """
    Convert an integer (x, y, z) voxel, or an (n, 3) array of voxels, into
    ray parameters and the ray-intersects-ground flag.
    """
    voxel = np.asarray(voxel)
    uvwz = get_scattering_texture_uvwz_from_voxel(voxel, extents)
    r, mu, mu_s, nu, ray_r_mu_intersects_ground = get_r_mu_mu_s_nu_from_scattering_texture_uvwz(
        atmosphere, *uvwz, extents=extents)

    # Clamp nu to its valid range of values, given mu and mu_s
    spread = np.sqrt((1.0 - mu * mu) * (1.0 - mu_s * mu_s))
    nu = np.clip(nu, mu * mu_s - spread, mu * mu_s + spread)

    if voxel.ndim == 1:
        return (ScatterCoord(float(r), float(mu), float(mu_s), float(nu)),
                bool(ray_r_mu_intersects_ground))
    return ScatterCoord(r, mu, mu_s, nu), ray_r_mu_intersects_ground
