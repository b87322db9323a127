"""
Configuration Manager for the transcoding pipeline
Handles loading and managing configuration from YAML files and CLI arguments
"""

import copy
import os
import yaml
import logging
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

CONFIG_FILES = [
    'pipeline.yaml',
    'logging.yaml',
]

KNOWN_STRATEGIES = ('frame_sampling', 'frame_sampling_reduced', 'precision', 'streaming')
QUALITY_TIER_ORDER = ('low', 'medium', 'high', 'ultra')


def packaged_config_dir() -> str:
    """Directory holding the default YAML files shipped with the package"""
    return os.path.join(os.path.abspath(os.path.dirname(__file__)), 'config')


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


class ConfigManager:
    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = config_dir
        self.config: Dict[str, Any] = {}
        self._config_file_timestamps: Dict[str, float] = {}
        self._load_all_configs()

    def _load_all_configs(self):
        """Load packaged defaults, then overlay any files found in the explicit config dir"""
        try:
            for config_file in CONFIG_FILES:
                loaded = False

                # 1) Packaged defaults
                packaged_path = os.path.join(packaged_config_dir(), config_file)
                if os.path.exists(packaged_path):
                    self._merge_file(packaged_path, config_file)
                    loaded = True

                # 2) Explicit config dir takes precedence key by key
                if self.config_dir:
                    config_path = os.path.join(self.config_dir, config_file)
                    if os.path.exists(config_path):
                        self._merge_file(config_path, config_file)
                        loaded = True

                if not loaded:
                    logger.warning(f"Config file not found in '{self.config_dir}' or packaged defaults: {config_file}")

        except yaml.YAMLError as e:
            logger.error(f"Error parsing configuration: {e}")
            raise

    def _merge_file(self, path: str, config_file: str):
        with open(path, 'r', encoding='utf-8') as file:
            config_data = yaml.safe_load(file)
        if config_data:
            _deep_merge(self.config, config_data)
        self._config_file_timestamps[config_file] = os.path.getmtime(path)
        logger.debug(f"Loaded config from {path}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: get('frame_sampling.profiles.fast.fps')
        """
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            logger.debug(f"Configuration key '{key_path}' not found, using default: {default}")
            return default

    def update_from_args(self, args_dict: Dict[str, Any]):
        """Update configuration with command line arguments"""
        overrides_applied = []
        for key, value in args_dict.items():
            if value is not None:
                old_value = self.get(key)
                self._set_nested_value(key, value)
                overrides_applied.append(f"{key}: {old_value} → {value}")
                logger.info(f"Configuration override applied: {key} = {value} (was: {old_value})")

        if overrides_applied:
            logger.info(f"Applied {len(overrides_applied)} CLI configuration overrides")
        else:
            logger.debug("No CLI configuration overrides to apply")

    def _set_nested_value(self, key_path: str, value: Any):
        """Set nested configuration value using dot notation"""
        keys = key_path.split('.')
        config_section = self.config

        for key in keys[:-1]:
            if key not in config_section or not isinstance(config_section[key], dict):
                config_section[key] = {}
            config_section = config_section[key]

        config_section[keys[-1]] = value

    def get_profile(self, name: str) -> Dict[str, Any]:
        """Get a frame-sampling profile by name"""
        profile = self.get(f'frame_sampling.profiles.{name}', {})
        if not profile:
            logger.warning(f"Frame-sampling profile '{name}' not found in config")
        return profile

    def get_temp_dir(self) -> str:
        """Return the temp directory used for encoder outputs (<cwd>/temp unless configured)"""
        temp_dir = self.get('paths.temp_dir') or os.path.join(os.getcwd(), 'temp')
        os.makedirs(temp_dir, exist_ok=True)
        return temp_dir

    def validate_config(self) -> bool:
        """Validate that required configuration values are present and sane"""
        issues = self.validate_configuration_values()
        for issue in issues:
            logger.error(f"Configuration issue: {issue}")
        if issues:
            return False

        logger.info("Configuration validation passed")
        return True

    def validate_configuration_values(self) -> List[str]:
        """Validate configuration values and return list of issues"""
        issues = []

        # Dispatcher buckets
        buckets = self.get('dispatcher.buckets', [])
        if not isinstance(buckets, list) or not buckets:
            issues.append("dispatcher.buckets must be a non-empty list")
        else:
            previous_limit = 0.0
            for i, bucket in enumerate(buckets):
                limit = bucket.get('max_size_mb')
                if limit is None:
                    if i != len(buckets) - 1:
                        issues.append(f"Unbounded bucket '{bucket.get('name', i)}' must be last")
                elif not isinstance(limit, (int, float)) or limit <= previous_limit:
                    issues.append(f"Bucket thresholds must be positive and ascending: {limit}")
                else:
                    previous_limit = limit

                strategies = bucket.get('strategies') or []
                if not strategies:
                    issues.append(f"Bucket '{bucket.get('name', i)}' has no strategies")
                for strategy in strategies:
                    if strategy not in KNOWN_STRATEGIES:
                        issues.append(f"Unknown strategy '{strategy}' (must be one of: {', '.join(KNOWN_STRATEGIES)})")

            if buckets[-1].get('max_size_mb') is not None:
                issues.append("Last dispatcher bucket must be unbounded (max_size_mb: null)")

        # Quality multipliers must grow with the tier
        multipliers = self.get('bitrate_planner.quality_multipliers', {})
        values = []
        for tier in QUALITY_TIER_ORDER:
            value = multipliers.get(tier)
            if not isinstance(value, (int, float)) or value <= 0:
                issues.append(f"Invalid quality multiplier for {tier}: {value} (must be positive number)")
            else:
                values.append(value)
        if len(values) == len(QUALITY_TIER_ORDER) and values != sorted(values):
            issues.append(f"Quality multipliers must increase with tier: {values}")

        # Frame-sampling profiles
        profiles = self.get('frame_sampling.profiles', {})
        for name, profile in profiles.items():
            for key in ('max_dimension', 'fps', 'max_frames'):
                value = profile.get(key)
                if not isinstance(value, (int, float)) or value <= 0:
                    issues.append(f"Invalid {name}.{key}: {value} (must be positive number)")
            rate = profile.get('playback_rate', 1.0)
            if not isinstance(rate, (int, float)) or rate <= 0:
                issues.append(f"Invalid {name}.playback_rate: {rate} (must be positive number)")

        floor = self.get('frame_sampling.retry.quality_floor', 0.5)
        step = self.get('frame_sampling.retry.quality_step', 0.1)
        if not (0 < floor <= 1):
            issues.append(f"Invalid retry quality_floor: {floor} (must be in (0, 1])")
        if not (0 < step < 1):
            issues.append(f"Invalid retry quality_step: {step} (must be in (0, 1))")

        # Streaming ratios
        ratios = self.get('streaming.compression_ratios', {})
        for speed, ratio in list(ratios.items()) + [('default', self.get('streaming.default_ratio'))]:
            if not isinstance(ratio, (int, float)) or not (0 < ratio < 1):
                issues.append(f"Invalid streaming ratio for {speed}: {ratio} (must be between 0 and 1)")

        # Precision engine
        crf = self.get('precision_engine.crf')
        if crf is not None and (not isinstance(crf, (int, float)) or crf < 0 or crf > 51):
            issues.append(f"Invalid CRF: {crf} (must be between 0-51)")
        margin = self.get('precision_engine.safety_margin')
        if margin is not None and (not isinstance(margin, (int, float)) or not (0 < margin <= 1)):
            issues.append(f"Invalid safety_margin: {margin} (must be in (0, 1])")

        chain = self.get('codecs.fallback_chain', [])
        if not chain:
            issues.append("codecs.fallback_chain must list at least one encoder")

        return issues

    def log_active_configuration(self):
        """Log active configuration values for debugging"""
        logger.info("=== Active Configuration Values ===")
        logger.info(f"Configuration directory: {self.config_dir or packaged_config_dir()}")
        for bucket in self.get('dispatcher.buckets', []):
            logger.info(f"  Bucket {bucket.get('name')}: < {bucket.get('max_size_mb')} MB -> {bucket.get('strategies')}")
        logger.info(f"  Quality multipliers: {self.get('bitrate_planner.quality_multipliers')}")
        logger.info(f"  Codec chain: {[c.get('encoder') for c in self.get('codecs.fallback_chain', [])]}")
        logger.info(f"  Streaming ratios: {self.get('streaming.compression_ratios')}")
        logger.info("=== End Configuration ===")
