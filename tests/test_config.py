"""
Tests for configuration defaults, validation and file loading.
"""

import argparse
import json
from pathlib import Path

import pytest

import taxa_network
from taxa_network.config import TaxaNetworkConfig
from taxa_network.exceptions import ConfigurationError
from taxa_network.utils import create_config_from_args, load_config, load_config_file, load_json_config


class TestValidation:

    def test_defaults_are_valid(self):
        config = TaxaNetworkConfig().validate()
        assert config.association_methods == ['spearman', 'kld']
        assert config.pseudocount == 1e-8

    def test_validate_returns_self(self):
        config = TaxaNetworkConfig()
        assert config.validate() is config

    def test_method_names_are_normalized(self):
        config = TaxaNetworkConfig(association_methods=['Spearman', 'KLD']).validate()
        assert config.association_methods == ['spearman', 'kld']

    def test_unknown_method(self):
        with pytest.raises(ConfigurationError, match='kendall'):
            TaxaNetworkConfig(association_methods=['kendall']).validate()

    def test_empty_methods(self):
        with pytest.raises(ConfigurationError):
            TaxaNetworkConfig(association_methods=[]).validate()

    @pytest.mark.parametrize('overrides', [
        {'normalization': 'rarefy'},
        {'prevalence_threshold': 150},
        {'taxonomy_rank': 'Kingdom'},
        {'collapse_rank': 'Strain'},
        {'n_permutations': 0},
        {'fdr_threshold': 0},
        {'correlation_threshold': 1.5},
        {'dissimilarity_quantile': -0.1},
        {'test_size': 1.0},
        {'cross_validation_folds': 1},
    ])
    def test_out_of_range_values(self, overrides):
        with pytest.raises(ConfigurationError):
            TaxaNetworkConfig(**overrides).validate()

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            TaxaNetworkConfig(normalization='rarefy').validate()

    def test_clr_rejects_dissimilarity_methods(self):
        config = TaxaNetworkConfig(normalization='clr', association_methods=['spearman', 'kld']).validate()
        with pytest.raises(ConfigurationError, match='kld'):
            config.check_network_methods()

    def test_clr_with_correlations(self):
        config = TaxaNetworkConfig(normalization='clr', association_methods=['spearman', 'pearson'])
        assert config.validate().check_network_methods() is config


class TestConfigFiles:

    def test_packaged_defaults_match_dataclass(self):
        path = Path(taxa_network.__file__).parent / "config.yml"
        assert load_config(str(path)) == TaxaNetworkConfig()

    def test_yaml_sections(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "filtering:\n"
            "  prevalence_threshold: 10\n"
            "network:\n"
            "  methods: [pearson, bray]\n"
            "  permutations: 250\n"
            "classification:\n"
            "  model_permutations: 0\n"
            "output:\n"
            "  formats: [json]\n"
        )
        config = load_config_file(str(path))
        assert config.prevalence_threshold == 10
        assert config.association_methods == ['pearson', 'bray']
        assert config.n_permutations == 250
        assert config.n_model_permutations == 0
        assert config.output_formats == ['json']

    def test_yaml_unknown_keys_are_ignored(self, tmp_path, caplog):
        path = tmp_path / "config.yml"
        path.write_text("network:\n  shuffles: 5\nplotting:\n  dpi: 300\n")
        config = load_config(str(path))
        assert config == TaxaNetworkConfig()
        assert 'network.shuffles' in caplog.text
        assert 'plotting' in caplog.text

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("- spearman\n- kld\n")
        with pytest.raises(ConfigurationError):
            load_config_file(str(path))

    def test_json_flat_attributes(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'n_permutations': 50, 'bootstrap': True, 'unknown': 1}))
        config = load_json_config(str(path))
        assert config.n_permutations == 50
        assert config.bootstrap is True

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_no_path_gives_defaults(self):
        assert load_config(None) == TaxaNetworkConfig()


class TestArgumentOverrides:

    def test_given_arguments_override(self):
        args = argparse.Namespace(
            permutations=200, methods='pearson, kld', fdr_threshold=0.1, prevalence=0.0,
            normalization='clr', rank='Genus', n_estimators=None, seed=0,
            output_format='json', bootstrap=True, no_plots=True,
        )
        config = create_config_from_args(args, TaxaNetworkConfig(n_permutations=10))
        assert config.n_permutations == 200
        assert config.association_methods == ['pearson', 'kld']
        assert config.fdr_threshold == 0.1
        assert config.prevalence_threshold == 0.0
        assert config.normalization == 'clr'
        assert config.taxonomy_rank == 'Genus'
        assert config.random_state == 0
        assert config.output_formats == ['json']
        assert config.bootstrap is True
        assert config.generate_plots is False
        assert config.n_estimators == 501

    def test_missing_arguments_keep_config(self):
        base = TaxaNetworkConfig(n_permutations=10, normalization='none')
        config = create_config_from_args(argparse.Namespace(), base)
        assert config.n_permutations == 10
        assert config.normalization == 'none'

    def test_zero_values_override(self):
        args = argparse.Namespace(permutations=0, fdr_threshold=0.0, n_estimators=0)
        base = TaxaNetworkConfig(n_permutations=10, fdr_threshold=0.2, n_estimators=50)
        config = create_config_from_args(args, base)
        assert config.n_permutations == 0
        assert config.fdr_threshold == 0.0
        assert config.n_estimators == 0
