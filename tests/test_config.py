import logging
import os
import unittest
from unittest import mock

from fasttrack.config import EngineSettings, FastTrackConfig
from fasttrack.logger import configure_logging


class TestEngineSettings(unittest.TestCase):
    def test_environment_overrides_defaults(self):
        env = {
            "FASTTRACK_FLOAT_THRESHOLD": "4",
            "FASTTRACK_MAX_RESULTS": "3",
            "FASTTRACK_ALLOW_NEGATIVE_LAG": "yes",
            "FASTTRACK_LOCK_TIMEOUT_SECONDS": "0.5",
        }
        with mock.patch.dict(os.environ, env):
            settings = EngineSettings()

        self.assertEqual(settings.float_threshold, 4)
        self.assertEqual(settings.max_results, 3)
        self.assertTrue(settings.allow_negative_lag)
        self.assertEqual(settings.lock_timeout_seconds, 0.5)

    def test_validate_rejects_out_of_range_values(self):
        for overrides in ({"float_threshold": -1}, {"max_overlap_fraction": 1.5}, {"lock_timeout_seconds": 0}):
            with self.subTest(**overrides):
                with self.assertRaises(ValueError):
                    EngineSettings(**overrides).validate()

        EngineSettings(float_threshold=0).validate()

    def test_fast_track_config_from_settings(self):
        settings = EngineSettings(float_threshold=7, max_results=2, max_overlap_fraction=0.5)

        config = FastTrackConfig.from_settings(settings, sort_by="confidence")

        self.assertEqual(config.float_threshold, 7)
        self.assertEqual(config.max_results, 2)
        self.assertEqual(config.max_overlap_fraction, 0.5)
        self.assertEqual(config.sort_by, "confidence")

    def test_unknown_risk_filter_rejected(self):
        with self.assertRaises(ValueError):
            FastTrackConfig(risk_level="extreme")


class TestLogging(unittest.TestCase):
    def test_single_handler_per_logger(self):
        logger = configure_logging("fasttrack.tests.logging")
        configure_logging("fasttrack.tests.logging")

        self.assertIsInstance(logger, logging.Logger)
        self.assertEqual(len(logger.handlers), 1)


if __name__ == "__main__":
    unittest.main()
