"""
Skylight Geometry - Ray/shell intersections, clamping helpers and density profiles.

Every function accepts Python scalars or broadcastable NumPy arrays, so the
same code serves a single voxel and a whole block of voxels.
"""

import numpy as np

from .parameters import AtmosphereParameters


def clamp_cosine(mu):
    return np.clip(mu, -1.0, 1.0)


def clamp_distance(d):
    return np.maximum(d, 0.0)


def clamp_radius(atmosphere: AtmosphereParameters, r):
    return np.clip(r, atmosphere.bottom_radius, atmosphere.top_radius)


def safe_sqrt(a):
    return np.sqrt(np.maximum(a, 0.0))


def smoothstep(edge0, edge1, x):
    """GLSL smoothstep; degenerates to a step function when edge0 == edge1."""
    width = edge1 - edge0
    t = np.clip(np.divide(x - edge0, np.where(width > 0.0, width, 1.0)), 0.0, 1.0)
    return np.where(width > 0.0, t * t * (3.0 - 2.0 * t), np.where(x >= edge0, 1.0, 0.0))


def distance_to_top_atmosphere_boundary(atmosphere: AtmosphereParameters, r, mu):
    """
    Distance from a point at radius r, looking in direction with cosine mu,
    to the top atmosphere boundary.
    """
    top_radius = atmosphere.top_radius
    discriminant = r * r * (mu * mu - 1.0) + top_radius * top_radius
    return clamp_distance(-r * mu + safe_sqrt(discriminant))


def distance_to_bottom_atmosphere_boundary(atmosphere: AtmosphereParameters, r, mu):
    """
    Distance from a point at radius r, looking in direction with cosine mu,
    to the ground.
    """
    bottom_radius = atmosphere.bottom_radius
    discriminant = r * r * (mu * mu - 1.0) + bottom_radius * bottom_radius
    return clamp_distance(-r * mu - safe_sqrt(discriminant))


def ray_intersects_ground(atmosphere: AtmosphereParameters, r, mu):
    """Check if a ray from radius r with direction cosine mu hits the ground."""
    bottom_radius = atmosphere.bottom_radius
    return (mu < 0.0) & (r * r * (mu * mu - 1.0) + bottom_radius * bottom_radius >= 0.0)


def distance_to_nearest_atmosphere_boundary(
    atmosphere: AtmosphereParameters, r, mu, ray_r_mu_intersects_ground
):
    """Distance to the ground if the ray hits it, otherwise to the top boundary."""
    return np.where(
        ray_r_mu_intersects_ground,
        distance_to_bottom_atmosphere_boundary(atmosphere, r, mu),
        distance_to_top_atmosphere_boundary(atmosphere, r, mu),
    )


def get_profile_density(layers, altitude):
    """
    Density of a layered profile at the given altitude.

    Layers are stacked from the ground up: each layer but the last covers its
    ``width`` of altitude, the last one extends to infinity. Layer formulas
    are evaluated at the absolute altitude.
    """
    altitude = np.asarray(altitude, dtype=np.float64)
    if not layers:
        return np.zeros_like(altitude)

    result = layers[-1].get_density(altitude)
    # Walk down from the top so the lowest matching layer wins
    boundaries = np.cumsum([layer.width for layer in layers[:-1]])
    for layer, upper in zip(reversed(layers[:-1]), reversed(boundaries)):
        result = np.where(altitude < upper, layer.get_density(altitude), result)
    return np.asarray(result)
