"""
Gravity magnitude and the NED gravity vector.

This module provides the latitude-dependent gravity used by the strapdown
mechanization and the default filter configuration.

The WGS-84 closed-form (Somigliana) formula accounts for:
    - Earth's oblate spheroid shape (equatorial bulge)
    - Centrifugal force from Earth's rotation
    - Latitude-dependent variation (about 0.05 m/s² from equator to poles)

Latitude is always in radians unless a function name says otherwise.
"""

from typing import Optional
import numpy as np


# WGS-84 Somigliana constants
GAMMA_EQUATOR = 9.7803253359  # normal gravity at the equator (m/s²)
SOMIGLIANA_K = 0.00193185265241
ECCENTRICITY_SQ = 0.00669437999013

STANDARD_GRAVITY = 9.80665


def gravity(lat_rad: float) -> float:
    """
    Compute gravity magnitude at sea level from geodetic latitude.

    Implements the WGS-84 Somigliana formula:

        g(μ) = γ_e (1 + k sin²μ) / sqrt(1 - e² sin²μ)

    Physical Interpretation:
        - Equator (μ=0°):   g ≈ 9.7803 m/s²
        - 45° latitude:     g ≈ 9.8062 m/s²
        - Poles (μ=±90°):   g ≈ 9.8322 m/s²

    Args:
        lat_rad: Geodetic latitude in radians, range [-π/2, π/2].

    Returns:
        Gravity magnitude in m/s² (positive).

    Example:
        >>> g = gravity(np.deg2rad(63.4305))  # Trondheim
        >>> print(f"{g:.4f}")  # ~9.8218
    """
    sin_lat_sq = np.sin(lat_rad) ** 2
    g = GAMMA_EQUATOR * (1.0 + SOMIGLIANA_K * sin_lat_sq) / np.sqrt(
        1.0 - ECCENTRICITY_SQ * sin_lat_sq
    )
    return float(g)


def gravity_from_lat_deg(lat_deg: float) -> float:
    """Convenience wrapper: gravity magnitude from latitude in degrees."""
    return gravity(np.deg2rad(lat_deg))


def gravity_magnitude(
    lat_rad: Optional[float] = None,
    default_g: float = STANDARD_GRAVITY,
) -> float:
    """
    Gravity magnitude with fallback when latitude is unknown.

    Args:
        lat_rad: Geodetic latitude in radians. If None, returns default_g.
        default_g: Fallback gravity magnitude. Default: standard gravity.

    Returns:
        Gravity magnitude in m/s².
    """
    if lat_rad is None:
        return default_g
    return gravity(lat_rad)


def gravity_vector_ned(g: float) -> np.ndarray:
    """
    Gravity vector in NED (pointing down, positive z).

    For a stationary, level IMU the accelerometer measures the reaction
    force f = [0, 0, -g], so R @ f + g_ned = 0.
    """
    return np.array([0.0, 0.0, g])
