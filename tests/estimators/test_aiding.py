"""
Unit tests for navcore/estimators/aiding.py (aiding configurations).

Run with: pytest tests/estimators/test_aiding.py -v
"""

import unittest
import numpy as np
import pytest

from navcore.estimators.aiding import (
    MEASUREMENT_TABLE,
    AidingConfig,
    HeadingSource,
    MeasurementBlock,
    block_rows,
    default_measurement_noise,
    default_process_noise,
    select_noise,
    validate_measurement_noise,
    validate_process_noise,
)


class TestAidingConfig(unittest.TestCase):
    def test_from_flags(self) -> None:
        self.assertIs(AidingConfig.from_flags(False, False), AidingConfig.COMPASS)
        self.assertIs(AidingConfig.from_flags(False, True), AidingConfig.COMPASS_VELOCITY)
        self.assertIs(AidingConfig.from_flags(True, False), AidingConfig.MAGNETOMETER)
        self.assertIs(AidingConfig.from_flags(True, True), AidingConfig.MAGNETOMETER_VELOCITY)

    def test_properties(self) -> None:
        config = AidingConfig.MAGNETOMETER_VELOCITY
        self.assertIs(config.heading_source, HeadingSource.MAGNETOMETER)
        self.assertTrue(config.velocity_aiding)
        self.assertFalse(AidingConfig.COMPASS.velocity_aiding)

    def test_measurement_dims(self) -> None:
        self.assertEqual(AidingConfig.COMPASS.measurement_dim, 7)
        self.assertEqual(AidingConfig.COMPASS_VELOCITY.measurement_dim, 10)
        self.assertEqual(AidingConfig.MAGNETOMETER.measurement_dim, 9)
        self.assertEqual(AidingConfig.MAGNETOMETER_VELOCITY.measurement_dim, 12)

    def test_table_covers_every_config(self) -> None:
        self.assertEqual(set(MEASUREMENT_TABLE), set(AidingConfig))
        for config in AidingConfig:
            blocks = config.blocks
            self.assertIs(blocks[0], MeasurementBlock.POSITION)
            self.assertEqual(MeasurementBlock.VELOCITY in blocks, config.velocity_aiding)
            self.assertIn(MeasurementBlock.GRAVITY, blocks)
            heading = (
                MeasurementBlock.MAGNETOMETER
                if config.heading_source is HeadingSource.MAGNETOMETER
                else MeasurementBlock.HEADING
            )
            self.assertIs(blocks[-1], heading)


class TestDefaultNoise(unittest.TestCase):
    def test_process_noise(self) -> None:
        Qd = default_process_noise()
        self.assertEqual(Qd.shape, (12, 12))
        np.testing.assert_array_equal(
            np.diag(Qd), [0.01] * 6 + [0.1] * 3 + [0.001] * 3
        )

    def test_measurement_noise_per_config(self) -> None:
        expected = {
            AidingConfig.MAGNETOMETER: [1, 1, 1, 1, 1, 1, 0.01, 0.01, 0.01],
            AidingConfig.MAGNETOMETER_VELOCITY: [1, 1, 1, 0.1, 0.1, 0.1, 1, 1, 1, 0.01, 0.01, 0.01],
            AidingConfig.COMPASS: [1, 1, 1, 1, 1, 1, 0.01],
            AidingConfig.COMPASS_VELOCITY: [1, 1, 1, 1, 1, 1, 1, 1, 1, 0.01],
        }
        for config, diag in expected.items():
            Rd = default_measurement_noise(config)
            np.testing.assert_array_equal(Rd, np.diag(diag))
            validate_measurement_noise(config, Rd)

    def test_measurement_noise_rejects_plain_string(self) -> None:
        with pytest.raises(TypeError, match="AidingConfig"):
            default_measurement_noise("compass")


class TestSelectNoise(unittest.TestCase):
    def test_block_rows(self) -> None:
        config = AidingConfig.COMPASS_VELOCITY
        self.assertEqual(block_rows(config, MeasurementBlock.POSITION), slice(0, 3))
        self.assertEqual(block_rows(config, MeasurementBlock.VELOCITY), slice(3, 6))
        self.assertEqual(block_rows(config, MeasurementBlock.GRAVITY), slice(6, 9))
        self.assertEqual(block_rows(config, MeasurementBlock.HEADING), slice(9, 10))

    def test_block_rows_unknown_block(self) -> None:
        with pytest.raises(ValueError):
            block_rows(AidingConfig.COMPASS, MeasurementBlock.MAGNETOMETER)

    def test_sub_matrix(self) -> None:
        config = AidingConfig.MAGNETOMETER_VELOCITY
        Rd = np.diag(np.arange(1.0, 13.0))
        sub = select_noise(config, Rd, [MeasurementBlock.POSITION, MeasurementBlock.MAGNETOMETER])
        np.testing.assert_array_equal(sub, np.diag([1.0, 2.0, 3.0, 10.0, 11.0, 12.0]))

    def test_full_selection_is_identity_map(self) -> None:
        config = AidingConfig.COMPASS
        Rd = default_measurement_noise(config)
        np.testing.assert_array_equal(select_noise(config, Rd, config.blocks), Rd)

    def test_empty_selection(self) -> None:
        Rd = default_measurement_noise(AidingConfig.COMPASS)
        self.assertEqual(select_noise(AidingConfig.COMPASS, Rd, []).shape, (0, 0))


class TestValidation(unittest.TestCase):
    def test_wrong_size(self) -> None:
        with pytest.raises(ValueError, match="shape"):
            validate_measurement_noise(AidingConfig.COMPASS, np.eye(9))

    def test_not_diagonal(self) -> None:
        Rd = np.eye(7)
        Rd[0, 1] = Rd[1, 0] = 0.1
        with pytest.raises(ValueError, match="diagonal"):
            validate_measurement_noise(AidingConfig.COMPASS, Rd)

    def test_non_positive(self) -> None:
        Rd = np.eye(9)
        Rd[4, 4] = 0.0
        with pytest.raises(ValueError, match="positive"):
            validate_measurement_noise(AidingConfig.MAGNETOMETER, Rd)

    def test_process_noise_checks(self) -> None:
        validate_process_noise(np.zeros((12, 12)))
        with pytest.raises(ValueError):
            validate_process_noise(np.eye(15))
        with pytest.raises(ValueError):
            validate_process_noise(-np.eye(12))
        with pytest.raises(ValueError):
            validate_process_noise(np.full((12, 12), np.nan))


if __name__ == "__main__":
    unittest.main()
