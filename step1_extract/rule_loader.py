#!/usr/bin/env python3
"""
Rule Loader - Load YAML rules from the rules directory
Every numbered rule file is read on top of shared.yaml defaults
"""

import os
import yaml
import logging
import hashlib
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

HOT_RELOAD_ENV = 'SAVINGS_HOT_RELOAD'

STRUCTURE_RULES_FILE = '10_structure.yaml'
EXTRACTION_RULES_FILE = '20_extraction.yaml'
MATCHING_RULES_FILE = '30_matching.yaml'
PRICING_RULES_FILE = '40_pricing.yaml'
OPTIMIZATION_RULES_FILE = '50_optimization.yaml'
QUALITY_RULES_FILE = '60_quality.yaml'


class RuleLoader:
    """Load and parse YAML rules, merging shared.yaml with step-specific rule files"""

    def __init__(self, rules_dir: Path, enable_hot_reload: Optional[bool] = None):
        """
        Initialize rule loader with rules directory

        Args:
            rules_dir: Path to rules directory
            enable_hot_reload: Enable checksum-based hot-reload. When None, the
                              SAVINGS_HOT_RELOAD environment variable decides (default: off)
        """
        if enable_hot_reload is None:
            enable_hot_reload = os.environ.get(HOT_RELOAD_ENV, '0') == '1'

        self.rules_dir = Path(rules_dir)
        self._rules_cache = {}
        self._file_checksums = {} if enable_hot_reload else None  # Only track when enabled
        self._enable_hot_reload = enable_hot_reload
        self._shared_rules = None  # Cache shared.yaml
        self._file_read_count = 0

    def _calculate_file_checksum(self, file_path: Path) -> str:
        """Calculate MD5 checksum for a file"""
        try:
            with open(file_path, 'rb') as f:
                return hashlib.md5(f.read()).hexdigest()
        except OSError as e:
            logger.warning(f"Error calculating checksum for {file_path}: {e}")
            return ''

    def _should_reload_file(self, filename: str, rule_file: Path) -> bool:
        """Check if a rule file should be reloaded based on checksum"""
        # Fast path: when hot-reload is disabled, only check cache
        if not self._enable_hot_reload:
            return filename not in self._rules_cache

        if not rule_file.exists():
            return False

        current_checksum = self._calculate_file_checksum(rule_file)
        cached_checksum = self._file_checksums.get(filename)

        if current_checksum != cached_checksum:
            if cached_checksum:
                logger.debug(f"Rule file {filename} modified, reloading...")
            return True

        return False

    def _load_yaml_file(self, file_path: Path) -> Dict[str, Any]:
        """Load a YAML file directly"""
        self._file_read_count += 1
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading YAML file {file_path}: {e}")
            return {}

    def _load_shared_rules(self) -> Dict[str, Any]:
        """Load shared.yaml rules"""
        shared_file = self.rules_dir / 'shared.yaml'
        if self._should_reload_file('shared.yaml', shared_file) or self._shared_rules is None:
            if shared_file.exists():
                self._shared_rules = self._load_yaml_file(shared_file)
                if self._enable_hot_reload:
                    self._file_checksums['shared.yaml'] = self._calculate_file_checksum(shared_file)
                logger.debug("Loaded shared.yaml")
            else:
                self._shared_rules = {}
                logger.warning("shared.yaml not found")
            self._rules_cache['shared.yaml'] = self._shared_rules
        return self._shared_rules

    def _merge_rules(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries
        override takes precedence over base
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_rules(result[key], value)
            else:
                result[key] = value

        return result

    def load_rule_file_by_name(self, filename: str) -> Dict[str, Any]:
        """
        Load a specific rule file by filename (e.g., '30_matching.yaml')

        Args:
            filename: Rule file name

        Returns:
            Rule dictionary or empty dict if not found
        """
        rule_file = self.rules_dir / filename

        if not rule_file.exists():
            logger.warning(f"Rule file not found: {rule_file}")
            return {}

        if self._should_reload_file(filename, rule_file):
            rules = self._load_yaml_file(rule_file)
            self._rules_cache[filename] = rules or {}
            if self._enable_hot_reload:
                self._file_checksums[filename] = self._calculate_file_checksum(rule_file)
            logger.debug(f"Loaded rule file: {filename}")

        return self._rules_cache.get(filename, {})

    def load_rule_file(self, filename: str) -> Dict[str, Any]:
        """
        Load a rule file merged over shared.yaml

        Args:
            filename: Rule file name

        Returns:
            Merged rules dictionary (rule file overrides shared values)
        """
        return self._merge_rules(self._load_shared_rules(), self.load_rule_file_by_name(filename))

    def get_flags(self) -> Dict[str, Any]:
        """
        Get feature flags from shared.yaml, with environment overrides

        Returns:
            Dict with enable_semantic_search and enable_ai_fallback
        """
        flags = dict(self._load_shared_rules().get('flags', {}))
        for key, env_name in (('enable_semantic_search', 'SAVINGS_SEMANTIC_SEARCH'),
                              ('enable_ai_fallback', 'SAVINGS_AI_FALLBACK')):
            env_value = os.environ.get(env_name)
            if env_value is not None:
                flags[key] = env_value == '1'
        return flags

    def get_processing_rules(self) -> Dict[str, Any]:
        """Get chunking/progress settings from shared.yaml"""
        return self._load_shared_rules().get('processing', {})

    def get_price_sanity_cap(self) -> float:
        """Unit prices above this value are treated as mis-detected"""
        return float(self._load_shared_rules().get('price_sanity_cap', 1000.0))

    def get_structure_rules(self) -> Dict[str, Any]:
        """Get header detection and column role rules from 10_structure.yaml"""
        return self.load_rule_file(STRUCTURE_RULES_FILE)

    def get_extraction_rules(self) -> Dict[str, Any]:
        """Get row extraction rules from 20_extraction.yaml"""
        return self.load_rule_file(EXTRACTION_RULES_FILE)

    def get_matching_rules(self) -> Dict[str, Any]:
        """Get catalog resolver tiers and score bands from 30_matching.yaml"""
        return self.load_rule_file(MATCHING_RULES_FILE)

    def get_pricing_rules(self) -> Dict[str, Any]:
        """Get markup factor and UoM aliases from 40_pricing.yaml"""
        return self.load_rule_file(PRICING_RULES_FILE)

    def get_optimization_rules(self) -> Dict[str, Any]:
        """Get yield classes, guardrails and savings floors from 50_optimization.yaml"""
        return self.load_rule_file(OPTIMIZATION_RULES_FILE)

    def get_quality_rules(self) -> Dict[str, Any]:
        """Get quality grade thresholds from 60_quality.yaml"""
        return self.load_rule_file(QUALITY_RULES_FILE)

    def get_file_read_count(self) -> int:
        """Number of YAML files read from disk since the last reset"""
        return self._file_read_count

    def reset_file_read_count(self):
        """Reset the file read counter"""
        self._file_read_count = 0

    def clear_cache(self):
        """Clear the rules cache"""
        logger.debug("Clearing rules cache")
        self._rules_cache.clear()
        if self._file_checksums is not None:
            self._file_checksums.clear()
        self._shared_rules = None
