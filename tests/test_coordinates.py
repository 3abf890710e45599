"""
Skylight Coordinate Tests - Voxel to (r, mu, mu_s, nu) mapping.
"""

import sys
import os
from dataclasses import replace

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pytest

from skylight.core.coordinates import (
    ScatterCoord,
    ScatteringGridExtents,
    get_scattering_texture_uvwz,
    get_scattering_texture_uvwz_from_voxel,
    map_voxel_to_scatter_coord,
)
from skylight.core.constants import compute_radiance_to_luminance
from skylight.core.parameters import AtmosphereParameters
from skylight.core.single_scattering import run_single_scattering_kernel
from skylight.core.textures import VoxelGrid
from skylight.core.transmittance import ConstantTransmittance


@pytest.fixture(scope="module")
def atmosphere():
    return AtmosphereParameters.earth_default().to_length_unit(1000.0)


@pytest.fixture(scope="module")
def extents():
    return ScatteringGridExtents(nu_size=4, mu_s_size=4, mu_size=8, r_size=4)


@pytest.fixture(scope="module")
def all_voxels(extents):
    return extents.voxels_from_indices(np.arange(extents.voxel_count))


def test_grid_extents(extents):
    default = ScatteringGridExtents()
    assert default.shape == (32, 128, 256)
    assert default.voxel_count == 32 * 128 * 256

    assert (extents.width, extents.height, extents.depth) == (16, 8, 4)
    assert extents.shape == (4, 8, 16)
    assert extents.voxel_count == 512

    with pytest.raises(ValueError):
        ScatteringGridExtents(mu_size=7)
    with pytest.raises(ValueError):
        ScatteringGridExtents(r_size=1)


def test_voxels_from_indices(extents, all_voxels):
    assert all_voxels.shape == (512, 3)
    assert all_voxels[0].tolist() == [0, 0, 0]
    assert all_voxels[1].tolist() == [1, 0, 0]
    assert all_voxels[16].tolist() == [0, 1, 0]
    assert all_voxels[-1].tolist() == [15, 7, 3]
    # Every voxel appears exactly once
    assert len({tuple(v) for v in all_voxels.tolist()}) == 512


def test_iter_blocks(extents):
    blocks = list(extents.iter_blocks(100))

    assert blocks[0] == (0, 100)
    assert blocks[-1] == (500, 512)
    assert sum(stop - start for start, stop in blocks) == 512
    assert all(a[1] == b[0] for a, b in zip(blocks, blocks[1:]))

    with pytest.raises(ValueError):
        list(extents.iter_blocks(0))


def test_mapped_coordinates_in_range(atmosphere, extents, all_voxels):
    coord, ground = map_voxel_to_scatter_coord(all_voxels, atmosphere, extents)
    r, mu, mu_s, nu = coord

    assert np.all(r >= atmosphere.bottom_radius)
    assert np.all(r <= atmosphere.top_radius)
    assert np.all(np.abs(mu) <= 1.0)
    assert np.all(np.abs(mu_s) <= 1.0)
    assert np.all(np.abs(nu) <= 1.0)
    assert np.all(mu_s >= atmosphere.mu_s_min - 1e-9)

    # The lower half of the grid holds the rays hitting the ground
    assert np.array_equal(ground, all_voxels[:, 1] < extents.mu_size // 2)
    assert np.all(mu[ground] < 0.0)

    # nu stays consistent with the view and sun directions
    spread = np.sqrt((1.0 - mu * mu) * (1.0 - mu_s * mu_s))
    assert np.all(nu >= mu * mu_s - spread - 1e-12)
    assert np.all(nu <= mu * mu_s + spread + 1e-12)

    # The range checks hold for every voxel
    coord.check(atmosphere)


def test_first_slice_is_on_the_ground(atmosphere, extents):
    coord, ground = map_voxel_to_scatter_coord((0, 4, 0), atmosphere, extents)

    assert isinstance(coord.r, float)
    assert isinstance(ground, bool)
    assert coord.r == atmosphere.bottom_radius
    # First row of the sky half looks straight up
    assert np.isclose(coord.mu, 1.0)
    assert not ground


def test_extreme_sun_angles(atmosphere, extents):
    # First mu_s column is the lowest stored sun, last column the zenith
    low, _ = map_voxel_to_scatter_coord((0, 4, 1), atmosphere, extents)
    high, _ = map_voxel_to_scatter_coord((3, 4, 1), atmosphere, extents)

    assert np.isclose(low.mu_s, atmosphere.mu_s_min)
    assert np.isclose(high.mu_s, 1.0)


def test_mapping_inverts_at_voxel_centres(atmosphere, extents, all_voxels):
    """Mapping the ray parameters back lands on the voxel centre."""
    coord, ground = map_voxel_to_scatter_coord(all_voxels, atmosphere, extents)
    u_nu, u_mu_s, u_mu, u_r = get_scattering_texture_uvwz(
        atmosphere, coord.r, coord.mu, coord.mu_s, coord.nu, ground, extents)
    _, expected_mu_s, expected_mu, expected_r = get_scattering_texture_uvwz_from_voxel(
        all_voxels, extents)

    assert np.allclose(u_r, expected_r, atol=1e-6)
    assert np.allclose(u_mu_s, expected_mu_s, atol=1e-6)
    # On the ground slice every ground ray degenerates to looking straight down
    above_ground = all_voxels[:, 2] > 0
    assert np.allclose(u_mu[above_ground], expected_mu[above_ground], atol=1e-5)
    assert np.all((u_nu >= 0.0) & (u_nu <= 1.0))


def test_mapping_is_monotonic_in_r(atmosphere, extents):
    radii = [map_voxel_to_scatter_coord((5, 6, z), atmosphere, extents)[0].r
             for z in range(extents.r_size)]
    assert radii == sorted(radii)
    assert radii[-1] == pytest.approx(atmosphere.top_radius)


def test_check_rejects_out_of_range(atmosphere):
    with pytest.raises(AssertionError):
        ScatterCoord(atmosphere.bottom_radius - 1.0, 0.0, 0.0, 0.0).check(atmosphere)
    with pytest.raises(AssertionError):
        ScatterCoord(atmosphere.bottom_radius, 1.5, 0.0, 0.0).check(atmosphere)


def test_top_slice_stays_inside_atmosphere():
    """Radii on the last r slice never round past the top boundary."""
    extents = ScatteringGridExtents(nu_size=2, mu_s_size=2, mu_size=4, r_size=2)
    voxels = extents.voxels_from_indices(np.arange(extents.voxel_count))
    voxels = voxels[voxels[:, 2] == extents.r_size - 1]
    rng = np.random.default_rng(7)

    pairs = [(6873884.124032055, 8054048.858913406)]
    for bottom in rng.uniform(1.0e6, 1.0e7, 500):
        pairs.append((bottom, bottom + rng.uniform(1.0e3, 2.0e6)))

    for bottom, top in pairs:
        atmosphere = replace(AtmosphereParameters.earth_default(), bottom_radius=bottom, top_radius=top)
        coord, _ = map_voxel_to_scatter_coord(voxels, atmosphere, extents)
        assert np.all(coord.r <= top)
        assert np.all(coord.r >= bottom)
        coord.check(atmosphere)


def test_kernel_runs_on_top_slice():
    extents = ScatteringGridExtents(nu_size=2, mu_s_size=2, mu_size=4, r_size=2)
    atmosphere = replace(AtmosphereParameters.earth_default(),
                         bottom_radius=6873884.124032055, top_radius=8054048.858913406)
    delta_rayleigh = VoxelGrid(extents.shape)
    delta_mie = VoxelGrid(extents.shape)

    scattering, _ = run_single_scattering_kernel(
        (0, 3, 1), compute_radiance_to_luminance(), atmosphere, ConstantTransmittance(1.0),
        delta_rayleigh, delta_mie, extents, 5)

    assert np.all(np.isfinite(scattering))
