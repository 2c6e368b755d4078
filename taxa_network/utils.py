# taxa_network/utils.py
"""
Utility functions for configuration loading and creation.
"""

import argparse
import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict

import yaml

from .config import TaxaNetworkConfig
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# YAML section -> {yaml key: config attribute}
_SECTION_KEYS = {
    'filtering': {
        'prevalence_threshold': 'prevalence_threshold',
        'normalization': 'normalization',
        'collapse_rank': 'collapse_rank',
    },
    'network': {
        'methods': 'association_methods',
        'permutations': 'n_permutations',
        'bootstrap': 'bootstrap',
        'pseudocount': 'pseudocount',
        'correlation_threshold': 'correlation_threshold',
        'dissimilarity_quantile': 'dissimilarity_quantile',
        'fdr_threshold': 'fdr_threshold',
        'correction_method': 'correction_method',
        'taxonomy_rank': 'taxonomy_rank',
    },
    'classification': {
        'n_estimators': 'n_estimators',
        'max_features': 'max_features',
        'test_size': 'test_size',
        'cross_validation_folds': 'cross_validation_folds',
        'model_permutations': 'n_model_permutations',
        'max_classes_for_classification': 'max_classes_for_classification',
    },
    'output': {
        'formats': 'output_formats',
        'include_matrices': 'include_matrices',
        'generate_plots': 'generate_plots',
    },
}


def create_config_from_args(args: argparse.Namespace,
                            config: TaxaNetworkConfig = None) -> TaxaNetworkConfig:
    """Overlay command line arguments that were given onto a configuration"""
    config = config or TaxaNetworkConfig()

    if getattr(args, 'permutations', None) is not None:
        config.n_permutations = args.permutations
    if getattr(args, 'methods', None):
        config.association_methods = [m.strip() for m in args.methods.split(',') if m.strip()]
    if getattr(args, 'fdr_threshold', None) is not None:
        config.fdr_threshold = args.fdr_threshold
    if getattr(args, 'prevalence', None) is not None:
        config.prevalence_threshold = args.prevalence
    if getattr(args, 'normalization', None):
        config.normalization = args.normalization
    if getattr(args, 'rank', None):
        config.taxonomy_rank = args.rank
    if getattr(args, 'n_estimators', None) is not None:
        config.n_estimators = args.n_estimators
    if getattr(args, 'seed', None) is not None:
        config.random_state = args.seed
    if getattr(args, 'output_format', None):
        config.output_formats = args.output_format.split(',')

    # Set boolean flags
    if getattr(args, 'bootstrap', False):
        config.bootstrap = True
    if getattr(args, 'no_plots', False):
        config.generate_plots = False

    return config


def _apply_sections(config: TaxaNetworkConfig, config_dict: Dict[str, Any]) -> None:
    for section, values in config_dict.items():
        if section not in _SECTION_KEYS:
            logger.warning(f"Unknown configuration section: {section}")
            continue
        for key, value in (values or {}).items():
            attribute = _SECTION_KEYS[section].get(key)
            if attribute is None:
                logger.warning(f"Unknown configuration parameter: {section}.{key}")
                continue
            setattr(config, attribute, value)


def load_config_file(config_path: str) -> TaxaNetworkConfig:
    """Load configuration from YAML file"""
    with open(config_path, 'r') as f:
        config_dict = yaml.safe_load(f) or {}

    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")

    config = TaxaNetworkConfig()
    _apply_sections(config, config_dict)
    return config


def load_json_config(config_path: str) -> TaxaNetworkConfig:
    """Load configuration from a JSON file with flat attribute names"""
    with open(config_path, 'r') as f:
        user_cfg = json.load(f)

    config = TaxaNetworkConfig()
    known = {f.name for f in fields(config)}
    for key, value in user_cfg.items():
        if key in known:
            setattr(config, key, value)
        else:
            logger.warning(f"Unknown configuration parameter: {key}")
    return config


def load_config(config_path: str = None) -> TaxaNetworkConfig:
    """Load YAML or JSON configuration by file suffix; defaults when no path is given."""
    if not config_path:
        return TaxaNetworkConfig()
    suffix = Path(config_path).suffix.lower()
    if suffix in {'.yml', '.yaml'}:
        return load_config_file(config_path)
    if suffix == '.json':
        return load_json_config(config_path)
    raise ConfigurationError(f"Unsupported configuration format: {suffix}")
