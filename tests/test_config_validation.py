"""
Unit tests for configuration loading, overrides and validation
"""

import unittest
import tempfile
import os
import shutil
import yaml
from reelsqueeze.config_manager import ConfigManager


class TestConfigValidation(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures"""
        shutil.rmtree(self.temp_dir)

    def _write_pipeline(self, data):
        with open(os.path.join(self.temp_dir, 'pipeline.yaml'), 'w') as f:
            yaml.dump(data, f)

    def test_packaged_defaults_are_valid(self):
        config_manager = ConfigManager()
        self.assertTrue(config_manager.validate_config())
        self.assertEqual(config_manager.get('frame_sampling.profiles.fast.max_dimension'), 720)
        self.assertEqual(config_manager.get('streaming.compression_ratios.lightning'), 0.05)

    def test_override_file_merges_over_defaults(self):
        self._write_pipeline({'streaming': {'default_chunk_size_mb': 20}})

        config_manager = ConfigManager(self.temp_dir)
        self.assertEqual(config_manager.get('streaming.default_chunk_size_mb'), 20)
        # Keys not mentioned in the override keep their packaged values
        self.assertEqual(config_manager.get('streaming.default_max_concurrent_chunks'), 4)
        self.assertTrue(config_manager.validate_config())

    def test_descending_bucket_thresholds_are_rejected(self):
        self._write_pipeline({'dispatcher': {'buckets': [
            {'name': 'a', 'max_size_mb': 2000, 'strategies': ['frame_sampling']},
            {'name': 'b', 'max_size_mb': 500, 'strategies': ['precision']},
            {'name': 'c', 'max_size_mb': None, 'strategies': ['streaming']},
        ]}})

        config_manager = ConfigManager(self.temp_dir)
        issues = config_manager.validate_configuration_values()
        self.assertTrue(any('ascending' in issue for issue in issues))
        self.assertFalse(config_manager.validate_config())

    def test_unknown_strategy_is_rejected(self):
        self._write_pipeline({'dispatcher': {'buckets': [
            {'name': 'all', 'max_size_mb': None, 'strategies': ['magic']},
        ]}})

        issues = ConfigManager(self.temp_dir).validate_configuration_values()
        self.assertTrue(any("Unknown strategy 'magic'" in issue for issue in issues))

    def test_non_monotonic_multipliers_are_rejected(self):
        self._write_pipeline({'bitrate_planner': {'quality_multipliers': {
            'low': 1.2, 'medium': 1.0, 'high': 1.1, 'ultra': 1.5
        }}})

        issues = ConfigManager(self.temp_dir).validate_configuration_values()
        self.assertTrue(any('increase with tier' in issue for issue in issues))

    def test_streaming_ratio_out_of_range(self):
        self._write_pipeline({'streaming': {'compression_ratios': {'lightning': 1.5}}})

        issues = ConfigManager(self.temp_dir).validate_configuration_values()
        self.assertTrue(any('lightning' in issue for issue in issues))

    def test_invalid_crf(self):
        self._write_pipeline({'precision_engine': {'crf': 70}})

        issues = ConfigManager(self.temp_dir).validate_configuration_values()
        self.assertTrue(any('CRF' in issue for issue in issues))


class TestConfigOverrides(unittest.TestCase):

    def test_update_from_args_sets_nested_values(self):
        config_manager = ConfigManager()
        config_manager.update_from_args({
            'precision_engine.enabled': False,
            'paths.temp_dir': '/tmp/reelsqueeze-test',
            'streaming.default_ratio': None,
        })
        self.assertFalse(config_manager.get('precision_engine.enabled'))
        self.assertEqual(config_manager.get('paths.temp_dir'), '/tmp/reelsqueeze-test')
        # None values are ignored
        self.assertEqual(config_manager.get('streaming.default_ratio'), 0.15)

    def test_missing_key_returns_default(self):
        config_manager = ConfigManager()
        self.assertEqual(config_manager.get('does.not.exist', 42), 42)

    def test_get_profile(self):
        profile = ConfigManager().get_profile('reduced')
        self.assertEqual(profile['fps'], 15)
        self.assertFalse(profile['skip_alternate_frames'])


if __name__ == '__main__':
    unittest.main()
