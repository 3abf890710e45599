"""
Skylight Single Scattering Tests - Integrand, trapezoidal integration and kernel entry.

Closed-form checks use a kilometer atmosphere with uniform Rayleigh density,
no aerosols and unit solar irradiance, where the integral along a ray reduces
to the ray length (unit transmittance) or to (1 - exp(-k L)) / k
(exponential transmittance).
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pytest

from skylight.core.constants import compute_radiance_to_luminance
from skylight.core.coordinates import ScatterCoord, ScatteringGridExtents, map_voxel_to_scatter_coord
from skylight.core.geometry import distance_to_nearest_atmosphere_boundary
from skylight.core.parameters import AtmosphereParameters, exponential_profile, uniform_profile
from skylight.core.single_scattering import (
    compute_single_scattering,
    compute_single_scattering_integrand,
    radiance_to_luminance,
    run_single_scattering_block,
    run_single_scattering_kernel,
)
from skylight.core.textures import VoxelGrid
from skylight.core.transmittance import ConstantTransmittance, TransmittanceTable

RAYLEIGH_KM = np.array([5.802e-3, 1.3558e-2, 3.31e-2, 4.8467e-2])


class ExponentialTransmittance:
    """Transmittance exp(-k d) along the view ray, unoccluded sun."""

    def __init__(self, k):
        self.k = np.asarray(k, dtype=np.float64)

    def get_transmittance(self, r, mu, d, ray_r_mu_intersects_ground):
        return np.exp(-self.k * np.asarray(d)[..., np.newaxis])

    def get_transmittance_to_sun(self, r, mu_s):
        return np.ones(np.shape(r) + (4,))


def uniform_atmosphere(density=1.0):
    return AtmosphereParameters(
        bottom_radius=6360.0,
        top_radius=6420.0,
        solar_irradiance=np.ones(4),
        rayleigh_density=uniform_profile(density),
        rayleigh_scattering=RAYLEIGH_KM,
        mie_density=exponential_profile(1.2),
        mie_scattering=np.zeros(4),
        mie_extinction=np.zeros(4),
        absorption_density=(),
        absorption_extinction=np.zeros(4),
        length_unit_in_meters=1000.0,
    )


@pytest.fixture(scope="module")
def earth():
    return AtmosphereParameters.earth_default().to_length_unit(1000.0)


@pytest.fixture(scope="module")
def earth_table(earth):
    return TransmittanceTable.compute(earth, width=64, height=16, sample_count=100)


@pytest.fixture(scope="module")
def extents():
    return ScatteringGridExtents(nu_size=4, mu_s_size=4, mu_size=8, r_size=4)


@pytest.fixture(scope="module")
def rad_to_lum():
    return compute_radiance_to_luminance()


def test_integrand_non_negative(earth, earth_table, extents):
    voxels = extents.voxels_from_indices(np.arange(extents.voxel_count))
    coord, ground = map_voxel_to_scatter_coord(voxels, earth, extents)
    path_length = distance_to_nearest_atmosphere_boundary(earth, coord.r, coord.mu, ground)

    for fraction in (0.0, 0.1, 0.5, 0.9, 1.0):
        rayleigh, mie = compute_single_scattering_integrand(
            earth, earth_table, coord, fraction * path_length, ground)
        assert rayleigh.shape == (extents.voxel_count, 4)
        assert np.all(rayleigh >= 0.0)
        assert np.all(mie >= 0.0)
        assert np.all(np.isfinite(rayleigh))


def test_uniform_atmosphere_straight_up():
    """Unit transmittance and uniform density integrate to the ray length."""
    atmosphere = uniform_atmosphere()
    coord = ScatterCoord(atmosphere.bottom_radius, 1.0, 1.0, 1.0)

    rayleigh, mie = compute_single_scattering(atmosphere, ConstantTransmittance(1.0), coord, False)

    expected = RAYLEIGH_KM * 1.0 * (atmosphere.top_radius - atmosphere.bottom_radius)
    assert np.allclose(rayleigh, expected, rtol=1e-9)
    assert np.all(mie == 0.0)


def test_trapezoidal_convergence():
    """Relative error against the closed form shrinks as the sample count grows."""
    atmosphere = uniform_atmosphere()
    k = np.array([0.005, 0.01, 0.02, 0.05])
    oracle = ExponentialTransmittance(k)
    coord = ScatterCoord(atmosphere.bottom_radius, 1.0, 1.0, 1.0)

    length = atmosphere.top_radius - atmosphere.bottom_radius
    expected = RAYLEIGH_KM * (1.0 - np.exp(-k * length)) / k

    errors = []
    for sample_count in (2, 5, 10, 50, 200):
        rayleigh, _ = compute_single_scattering(atmosphere, oracle, coord, False, sample_count)
        errors.append(np.abs(rayleigh - expected) / expected)

    errors = np.array(errors)
    assert np.all(np.diff(errors, axis=0) < 0.0)
    # The production sample count is accurate to well below a percent
    assert np.all(errors[3] < 1e-3)


def test_zero_path_length(earth, earth_table):
    """A camera at the top looking up integrates over nothing."""
    coord = ScatterCoord(earth.top_radius, 1.0, 0.5, 0.5)

    rayleigh, mie = compute_single_scattering(earth, earth_table, coord, False)

    assert rayleigh.shape == (4,)
    assert np.all(rayleigh == 0.0)
    assert np.all(mie == 0.0)


def test_zero_density_gives_zero_radiance(extents, rad_to_lum):
    """No medium means no in-scattering, whichever transmittance branch is used."""
    atmosphere = AtmosphereParameters(
        rayleigh_density=uniform_profile(0.0),
        mie_density=uniform_profile(0.0),
        absorption_extinction=np.zeros(4),
    ).to_length_unit(1000.0)
    table = TransmittanceTable.compute(atmosphere, width=32, height=8, sample_count=20)

    voxels = extents.voxels_from_indices(np.arange(extents.voxel_count))
    _, ground = map_voxel_to_scatter_coord(voxels, atmosphere, extents)
    assert np.any(ground) and not np.all(ground)

    delta_rayleigh = VoxelGrid(extents.shape)
    delta_mie = VoxelGrid(extents.shape)
    scattering, single_mie = run_single_scattering_block(
        voxels, rad_to_lum, atmosphere, table, delta_rayleigh, delta_mie, extents, 10)

    assert np.all(delta_rayleigh.to_array() == 0.0)
    assert np.all(delta_mie.to_array() == 0.0)
    assert np.all(scattering == 0.0)
    assert np.all(single_mie == 0.0)


def test_sun_on_horizon_camera_point_ignores_nu(earth, earth_table):
    """At d = 0 the sun cosine is mu_s itself, so the sign of nu cannot matter."""
    r = earth.bottom_radius + 2.0
    for mu, nu in ((0.5, 0.3), (0.1, 0.8), (-0.05, 0.6)):
        plus = ScatterCoord(r, mu, 0.0, nu)
        minus = ScatterCoord(r, mu, 0.0, -nu)
        ground = bool(mu < 0.0 and r * r * (mu * mu - 1.0) + earth.bottom_radius ** 2 >= 0.0)

        rayleigh_plus, mie_plus = compute_single_scattering_integrand(earth, earth_table, plus, 0.0, ground)
        rayleigh_minus, mie_minus = compute_single_scattering_integrand(earth, earth_table, minus, 0.0, ground)

        assert np.allclose(rayleigh_plus, rayleigh_minus)
        assert np.allclose(mie_plus, mie_minus)


def test_sun_on_horizon_along_the_ray(earth, earth_table):
    """Away from the camera, a sun on the side of the view ray is seen higher and less attenuated."""
    r = earth.bottom_radius + 2.0
    mu, nu, d = 0.1, 0.9, 50.0

    rayleigh_plus, mie_plus = compute_single_scattering_integrand(
        earth, earth_table, ScatterCoord(r, mu, 0.0, nu), d, False)
    rayleigh_minus, mie_minus = compute_single_scattering_integrand(
        earth, earth_table, ScatterCoord(r, mu, 0.0, -nu), d, False)

    assert np.all(rayleigh_minus > 0.0)
    assert np.all(rayleigh_plus > rayleigh_minus)
    assert np.all(mie_plus > mie_minus)
    # Density and view transmittance are shared, so only the sun term differs
    assert np.allclose(rayleigh_plus / mie_plus, rayleigh_minus / mie_minus)


def test_kernel_entry_end_to_end(extents, rad_to_lum):
    """Voxel looking straight up from the ground in a uniform atmosphere."""
    atmosphere = uniform_atmosphere()
    voxel = (2, extents.mu_size // 2, 0)

    coord, ground = map_voxel_to_scatter_coord(voxel, atmosphere, extents)
    assert coord.r == atmosphere.bottom_radius
    assert np.isclose(coord.mu, 1.0)
    assert not ground

    delta_rayleigh = VoxelGrid(extents.shape)
    delta_mie = VoxelGrid(extents.shape)
    scattering, single_mie = run_single_scattering_kernel(
        voxel, rad_to_lum, atmosphere, ConstantTransmittance(1.0), delta_rayleigh, delta_mie, extents)

    expected = RAYLEIGH_KM * 1.0 * 60.0
    stored = delta_rayleigh.to_array()[0, extents.mu_size // 2, 2]
    assert np.allclose(stored, expected, rtol=1e-5)
    assert np.all(delta_mie.to_array() == 0.0)

    assert scattering.shape == (3,)
    assert np.allclose(scattering, (rad_to_lum @ expected)[:3], rtol=1e-9)
    assert np.all(single_mie == 0.0)

    # The voxel is written once per pass
    with pytest.raises(RuntimeError):
        run_single_scattering_kernel(
            voxel, rad_to_lum, atmosphere, ConstantTransmittance(1.0), delta_rayleigh, delta_mie, extents)


def test_block_matches_single_voxels(earth, earth_table, extents, rad_to_lum):
    voxels = np.array([[0, 0, 0], [5, 3, 1], [9, 4, 2], [15, 7, 3]])

    block_rayleigh = VoxelGrid(extents.shape)
    block_mie = VoxelGrid(extents.shape)
    block_scattering, block_single_mie = run_single_scattering_block(
        voxels, rad_to_lum, earth, earth_table, block_rayleigh, block_mie, extents)

    single_rayleigh = VoxelGrid(extents.shape)
    single_mie = VoxelGrid(extents.shape)
    for i, voxel in enumerate(voxels):
        scattering, mie = run_single_scattering_kernel(
            voxel, rad_to_lum, earth, earth_table, single_rayleigh, single_mie, extents)
        assert np.allclose(scattering, block_scattering[i])
        assert np.allclose(mie, block_single_mie[i])

    assert np.allclose(block_rayleigh.to_array(), single_rayleigh.to_array())
    assert np.allclose(block_mie.to_array(), single_mie.to_array())


def test_radiance_to_luminance_keeps_three_components(rad_to_lum):
    radiance = np.array([[1.0, 0.0, 0.0, 0.0], [0.0, 0.0, 0.0, 1.0]])
    luminance = radiance_to_luminance(rad_to_lum, radiance)

    assert luminance.shape == (2, 3)
    assert np.allclose(luminance[0], rad_to_lum[:3, 0])
    assert np.allclose(luminance[1], rad_to_lum[:3, 3])


def test_invalid_sample_count(earth, earth_table):
    coord = ScatterCoord(earth.bottom_radius, 1.0, 1.0, 1.0)
    with pytest.raises(ValueError):
        compute_single_scattering(earth, earth_table, coord, False, sample_count=0)
    with pytest.raises(ValueError):
        run_single_scattering_block(
            np.zeros(3, dtype=int), compute_radiance_to_luminance(), earth, earth_table,
            VoxelGrid((1, 1, 1)), VoxelGrid((1, 1, 1)))
