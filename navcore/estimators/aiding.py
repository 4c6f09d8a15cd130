"""
Aiding configurations of the error-state filter.

The filter is always aided by position; velocity aiding and the heading
source are chosen per run. The four combinations form a closed set, and each
maps to a fixed measurement layout (rows of the stacked innovation and of
the diagonal measurement noise Rd):

    ============================  ==============================  =====
    AidingConfig                  Measurement vector              dim
    ============================  ==============================  =====
    COMPASS                       [y_p(3), y_g(3), y_ψ(1)]          7
    COMPASS_VELOCITY              [y_p(3), y_v(3), y_g(3), y_ψ(1)]  10
    MAGNETOMETER                  [y_p(3), y_g(3), y_m(3)]          9
    MAGNETOMETER_VELOCITY         [y_p(3), y_v(3), y_g(3), y_m(3)]  12
    ============================  ==============================  =====

y_g is the gravity direction measured by the accelerometer (levelling
pseudo-measurement). On a given tick only the blocks actually present are
used, and select_noise() extracts the matching sub-matrix of Rd.
"""

from enum import Enum
from typing import Dict, Sequence, Tuple
import numpy as np

from navcore.sensors.types import PROCESS_NOISE_DIM


class HeadingSource(Enum):
    """Where the heading information comes from."""

    COMPASS = "compass"
    MAGNETOMETER = "magnetometer"


class MeasurementBlock(Enum):
    """One group of rows in the stacked measurement vector.

    The value is (name, number of rows).
    """

    POSITION = ("position", 3)
    VELOCITY = ("velocity", 3)
    GRAVITY = ("gravity", 3)
    MAGNETOMETER = ("magnetometer", 3)
    HEADING = ("heading", 1)

    @property
    def size(self) -> int:
        return self.value[1]


class AidingConfig(Enum):
    """Closed set of aiding combinations: heading source x velocity aiding."""

    COMPASS = (HeadingSource.COMPASS, False)
    COMPASS_VELOCITY = (HeadingSource.COMPASS, True)
    MAGNETOMETER = (HeadingSource.MAGNETOMETER, False)
    MAGNETOMETER_VELOCITY = (HeadingSource.MAGNETOMETER, True)

    @classmethod
    def from_flags(cls, magnetometer: bool, velocity: bool) -> "AidingConfig":
        """
        Select the configuration from the two run flags.

        Example:
            >>> AidingConfig.from_flags(magnetometer=True, velocity=False).name
            'MAGNETOMETER'
        """
        source = HeadingSource.MAGNETOMETER if magnetometer else HeadingSource.COMPASS
        return cls((source, bool(velocity)))

    @property
    def heading_source(self) -> HeadingSource:
        return self.value[0]

    @property
    def velocity_aiding(self) -> bool:
        return self.value[1]

    @property
    def blocks(self) -> Tuple[MeasurementBlock, ...]:
        return MEASUREMENT_TABLE[self]

    @property
    def measurement_dim(self) -> int:
        """Rows of the full measurement vector (size of Rd)."""
        return sum(block.size for block in self.blocks)


MEASUREMENT_TABLE: Dict[AidingConfig, Tuple[MeasurementBlock, ...]] = {
    AidingConfig.COMPASS: (
        MeasurementBlock.POSITION,
        MeasurementBlock.GRAVITY,
        MeasurementBlock.HEADING,
    ),
    AidingConfig.COMPASS_VELOCITY: (
        MeasurementBlock.POSITION,
        MeasurementBlock.VELOCITY,
        MeasurementBlock.GRAVITY,
        MeasurementBlock.HEADING,
    ),
    AidingConfig.MAGNETOMETER: (
        MeasurementBlock.POSITION,
        MeasurementBlock.GRAVITY,
        MeasurementBlock.MAGNETOMETER,
    ),
    AidingConfig.MAGNETOMETER_VELOCITY: (
        MeasurementBlock.POSITION,
        MeasurementBlock.VELOCITY,
        MeasurementBlock.GRAVITY,
        MeasurementBlock.MAGNETOMETER,
    ),
}


# Diagonal of Qd: velocity (3), acc bias walk (3), gyro (3), gyro bias walk (3)
DEFAULT_PROCESS_NOISE_DIAG = np.array(
    [0.01] * 3 + [0.01] * 3 + [0.1] * 3 + [0.001] * 3
)

# Diagonal of Rd per block
DEFAULT_BLOCK_NOISE: Dict[MeasurementBlock, float] = {
    MeasurementBlock.POSITION: 1.0,
    MeasurementBlock.GRAVITY: 1.0,
    MeasurementBlock.MAGNETOMETER: 0.01,
    MeasurementBlock.HEADING: 0.01,
}

# Velocity noise differs between the magnetometer and compass layouts
DEFAULT_VELOCITY_NOISE: Dict[HeadingSource, float] = {
    HeadingSource.MAGNETOMETER: 0.1,
    HeadingSource.COMPASS: 1.0,
}


def default_process_noise() -> np.ndarray:
    """
    Default discrete process noise Qd, shape (12, 12).

    Example:
        >>> float(np.diag(default_process_noise())[6])
        0.1
    """
    return np.diag(DEFAULT_PROCESS_NOISE_DIAG)


def default_measurement_noise(config: AidingConfig) -> np.ndarray:
    """
    Default measurement noise Rd for an aiding configuration.

    Returns:
        Diagonal matrix of size config.measurement_dim.

    Example:
        >>> default_measurement_noise(AidingConfig.COMPASS).shape
        (7, 7)
    """
    if not isinstance(config, AidingConfig):
        raise TypeError(f"config must be an AidingConfig, got {type(config)}")
    diag = []
    for block in config.blocks:
        if block is MeasurementBlock.VELOCITY:
            value = DEFAULT_VELOCITY_NOISE[config.heading_source]
        else:
            value = DEFAULT_BLOCK_NOISE[block]
        diag.extend([value] * block.size)
    return np.diag(diag)


def block_rows(config: AidingConfig, block: MeasurementBlock) -> slice:
    """Rows of ``block`` in the full measurement vector of ``config``."""
    start = 0
    for candidate in config.blocks:
        if candidate is block:
            return slice(start, start + candidate.size)
        start += candidate.size
    raise ValueError(f"{block.name} is not a measurement of {config.name}")


def select_noise(
    config: AidingConfig,
    Rd: np.ndarray,
    blocks: Sequence[MeasurementBlock],
) -> np.ndarray:
    """
    Extract the noise sub-matrix for the blocks present on this tick.

    Args:
        config: Aiding configuration that defines the layout of Rd.
        Rd: Full measurement noise, shape (config.measurement_dim,) * 2.
        blocks: Blocks to keep, in the order they are stacked.

    Returns:
        Square sub-matrix of Rd with matching rows and columns.
    """
    if not blocks:
        return np.zeros((0, 0))
    idx = np.concatenate(
        [np.arange(block_rows(config, b).start, block_rows(config, b).stop) for b in blocks]
    )
    return Rd[np.ix_(idx, idx)]


def validate_measurement_noise(config: AidingConfig, Rd: np.ndarray) -> np.ndarray:
    """
    Check that Rd matches the configuration.

    Rd must be square with config.measurement_dim rows, diagonal, and have
    strictly positive, finite diagonal entries.

    Raises:
        ValueError: If any check fails.
    """
    Rd = np.asarray(Rd, dtype=float)
    dim = config.measurement_dim
    if Rd.shape != (dim, dim):
        raise ValueError(
            f"Rd for {config.name} must have shape ({dim}, {dim}), got {Rd.shape}"
        )
    if not np.all(np.isfinite(Rd)):
        raise ValueError("Rd must be finite")
    if np.any(Rd - np.diag(np.diag(Rd)) != 0.0):
        raise ValueError("Rd must be diagonal")
    if np.any(np.diag(Rd) <= 0.0):
        raise ValueError("Rd diagonal entries must be positive")
    return Rd


def validate_process_noise(Qd: np.ndarray) -> np.ndarray:
    """
    Check that Qd is a (12, 12) finite diagonal matrix with non-negative entries.

    Raises:
        ValueError: If any check fails.
    """
    Qd = np.asarray(Qd, dtype=float)
    dim = PROCESS_NOISE_DIM
    if Qd.shape != (dim, dim):
        raise ValueError(f"Qd must have shape ({dim}, {dim}), got {Qd.shape}")
    if not np.all(np.isfinite(Qd)):
        raise ValueError("Qd must be finite")
    if np.any(Qd - np.diag(np.diag(Qd)) != 0.0):
        raise ValueError("Qd must be diagonal")
    if np.any(np.diag(Qd) < 0.0):
        raise ValueError("Qd diagonal entries must be non-negative")
    return Qd
