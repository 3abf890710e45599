"""
Skylight Transmittance - Transmittance LUT precompute and lookups.

The transmittance table stores, for every (r, mu), the fraction of light
surviving from that point to the top of the atmosphere. Transmittance between
two arbitrary points of a ray is the ratio of two table lookups.
"""

import numpy as np

from .constants import (
    TRANSMITTANCE_TEXTURE_WIDTH,
    TRANSMITTANCE_TEXTURE_HEIGHT,
    TRANSMITTANCE_SAMPLE_COUNT,
    NUM_CHANNELS,
)
from .geometry import (
    clamp_cosine,
    clamp_radius,
    distance_to_top_atmosphere_boundary,
    get_profile_density,
    safe_sqrt,
    smoothstep,
)
from .parameters import AtmosphereParameters
from .textures import (
    SampledTable,
    get_texture_coord_from_unit_range,
    get_unit_range_from_texture_coord,
)


def _divide_or_zero(numerator, denominator):
    return np.divide(numerator, denominator,
                     out=np.zeros(np.broadcast(numerator, denominator).shape),
                     where=denominator > 0.0)


def get_transmittance_texture_uv_from_r_mu(
    atmosphere: AtmosphereParameters, r, mu,
    width: int = TRANSMITTANCE_TEXTURE_WIDTH,
    height: int = TRANSMITTANCE_TEXTURE_HEIGHT,
):
    """Map (r, mu) to transmittance texture coordinates (u along mu, v along r)."""
    bottom = atmosphere.bottom_radius
    top = atmosphere.top_radius
    H = np.sqrt(top * top - bottom * bottom)
    rho = safe_sqrt(r * r - bottom * bottom)

    d = distance_to_top_atmosphere_boundary(atmosphere, r, mu)
    d_min = top - r
    d_max = rho + H
    x_mu = (d - d_min) / (d_max - d_min)
    x_r = rho / H
    return (get_texture_coord_from_unit_range(x_mu, width),
            get_texture_coord_from_unit_range(x_r, height))


def get_r_mu_from_transmittance_texture_uv(
    atmosphere: AtmosphereParameters, u, v,
    width: int = TRANSMITTANCE_TEXTURE_WIDTH,
    height: int = TRANSMITTANCE_TEXTURE_HEIGHT,
):
    """Convert transmittance texture UV to (r, mu) parameters."""
    bottom = atmosphere.bottom_radius
    top = atmosphere.top_radius
    H = np.sqrt(top * top - bottom * bottom)

    x_mu = get_unit_range_from_texture_coord(u, width)
    x_r = get_unit_range_from_texture_coord(v, height)

    # Distance to top atmosphere boundary for a horizontal ray, then the
    # [d_min, d_max] range of distances for rays starting at r
    rho = H * x_r
    r = np.sqrt(rho * rho + bottom * bottom)
    d_min = top - r
    d_max = rho + H
    d = d_min + x_mu * (d_max - d_min)

    mu = np.where(d == 0.0, 1.0,
                  (H * H - rho * rho - d * d) / (2.0 * r * np.where(d == 0.0, 1.0, d)))
    return r, clamp_cosine(mu)


def compute_optical_length_to_top_atmosphere_boundary(
    atmosphere: AtmosphereParameters, layers, r, mu,
    sample_count: int = TRANSMITTANCE_SAMPLE_COUNT,
):
    """
    Integral of a density profile from (r, mu) to the top of the atmosphere,
    using the trapezoidal rule.
    """
    dx = distance_to_top_atmosphere_boundary(atmosphere, r, mu) / sample_count
    result = np.zeros(np.shape(dx))

    for i in range(sample_count + 1):
        d_i = i * dx
        # Distance between the current sample point and the planet center
        r_i = np.sqrt(d_i * d_i + 2.0 * r * mu * d_i + r * r)
        y_i = get_profile_density(layers, r_i - atmosphere.bottom_radius)
        weight_i = 0.5 if i == 0 or i == sample_count else 1.0
        result = result + y_i * weight_i * dx

    return np.asarray(result)


def compute_transmittance_to_top_atmosphere_boundary(
    atmosphere: AtmosphereParameters, r, mu,
    sample_count: int = TRANSMITTANCE_SAMPLE_COUNT,
) -> np.ndarray:
    """Transmittance from (r, mu) to the top of the atmosphere, shape (..., 4)."""
    optical_depth = (
        atmosphere.rayleigh_scattering * compute_optical_length_to_top_atmosphere_boundary(
            atmosphere, atmosphere.rayleigh_density, r, mu, sample_count)[..., np.newaxis] +
        atmosphere.mie_extinction * compute_optical_length_to_top_atmosphere_boundary(
            atmosphere, atmosphere.mie_density, r, mu, sample_count)[..., np.newaxis] +
        atmosphere.absorption_extinction * compute_optical_length_to_top_atmosphere_boundary(
            atmosphere, atmosphere.absorption_density, r, mu, sample_count)[..., np.newaxis]
    )
    return np.exp(-optical_depth)


def compute_transmittance_table(
    atmosphere: AtmosphereParameters,
    width: int = TRANSMITTANCE_TEXTURE_WIDTH,
    height: int = TRANSMITTANCE_TEXTURE_HEIGHT,
    sample_count: int = TRANSMITTANCE_SAMPLE_COUNT,
) -> np.ndarray:
    """Precompute the (height, width, 4) transmittance table at texel centres."""
    if width < 2 or height < 2:
        raise ValueError(f"Transmittance table must be at least 2x2, got {width}x{height}")
    if sample_count < 1:
        raise ValueError(f"sample_count must be positive, got {sample_count}")

    jj, ii = np.meshgrid(np.arange(height), np.arange(width), indexing='ij')
    u = (ii + 0.5) / width
    v = (jj + 0.5) / height
    r, mu = get_r_mu_from_transmittance_texture_uv(atmosphere, u, v, width, height)

    transmittance = compute_transmittance_to_top_atmosphere_boundary(atmosphere, r, mu, sample_count)
    return transmittance.astype(np.float32)


class TransmittanceTable:
    """
    Read-only transmittance oracle backed by a precomputed table.

    Shared by every kernel invocation of a pass; nothing mutates it after
    construction.
    """

    def __init__(self, atmosphere: AtmosphereParameters, data: np.ndarray):
        self.atmosphere = atmosphere
        self.table = SampledTable(data)
        if self.table.channels != NUM_CHANNELS:
            raise ValueError(f"Transmittance table must have {NUM_CHANNELS} channels, "
                             f"got {self.table.channels}")

    @classmethod
    def compute(
        cls, atmosphere: AtmosphereParameters,
        width: int = TRANSMITTANCE_TEXTURE_WIDTH,
        height: int = TRANSMITTANCE_TEXTURE_HEIGHT,
        sample_count: int = TRANSMITTANCE_SAMPLE_COUNT,
    ) -> 'TransmittanceTable':
        return cls(atmosphere, compute_transmittance_table(atmosphere, width, height, sample_count))

    @property
    def data(self) -> np.ndarray:
        return self.table.data

    def get_transmittance_to_top_atmosphere_boundary(self, r, mu) -> np.ndarray:
        u, v = get_transmittance_texture_uv_from_r_mu(
            self.atmosphere, r, mu, self.table.width, self.table.height)
        return self.table.sample(u, v)

    def get_transmittance(self, r, mu, d, ray_r_mu_intersects_ground) -> np.ndarray:
        """
        Transmittance between the point at (r, mu) and the point at distance d
        along the same ray.
        """
        r_d = clamp_radius(self.atmosphere, np.sqrt(d * d + 2.0 * r * mu * d + r * r))
        mu_d = clamp_cosine((r * mu + d) / r_d)

        # Ground rays leave the table's domain, so look them up reversed
        trans_ground = _divide_or_zero(
            self.get_transmittance_to_top_atmosphere_boundary(r_d, -mu_d),
            self.get_transmittance_to_top_atmosphere_boundary(r, -mu))
        trans_sky = _divide_or_zero(
            self.get_transmittance_to_top_atmosphere_boundary(r, mu),
            self.get_transmittance_to_top_atmosphere_boundary(r_d, mu_d))

        ground = np.asarray(ray_r_mu_intersects_ground)[..., np.newaxis]
        return np.minimum(np.where(ground, trans_ground, trans_sky), 1.0)

    def get_transmittance_to_sun(self, r, mu_s) -> np.ndarray:
        """
        Transmittance to the sun, attenuated by the fraction of the sun disc
        above the horizon.
        """
        atmosphere = self.atmosphere
        sin_theta_h = atmosphere.bottom_radius / r
        cos_theta_h = -safe_sqrt(1.0 - sin_theta_h * sin_theta_h)
        visible = smoothstep(
            -sin_theta_h * atmosphere.sun_angular_radius,
            sin_theta_h * atmosphere.sun_angular_radius,
            mu_s - cos_theta_h,
        )
        return (self.get_transmittance_to_top_atmosphere_boundary(r, mu_s) *
                np.asarray(visible)[..., np.newaxis])


class ConstantTransmittance:
    """
    Transmittance oracle returning the same value everywhere.

    Useful for closed-form checks where attenuation is factored out.
    """

    def __init__(self, value=1.0):
        self.value = np.broadcast_to(np.asarray(value, dtype=np.float64), (NUM_CHANNELS,))

    def _constant(self, *args) -> np.ndarray:
        shape = np.broadcast(*[np.asarray(a) for a in args]).shape
        return np.broadcast_to(self.value, shape + (NUM_CHANNELS,)).copy()

    def get_transmittance_to_top_atmosphere_boundary(self, r, mu) -> np.ndarray:
        return self._constant(r, mu)

    def get_transmittance(self, r, mu, d, ray_r_mu_intersects_ground) -> np.ndarray:
        return self._constant(r, mu, d, ray_r_mu_intersects_ground)

    def get_transmittance_to_sun(self, r, mu_s) -> np.ndarray:
        return self._constant(r, mu_s)
