"""
Tests for association matrices, permutation p-value matrices, FDR control
and edge selection.
"""

import json

import numpy as np
import pandas as pd
import pytest

from taxa_network.config import TaxaNetworkConfig
from taxa_network.data_loader import prevalence_filtering, relative_abundance
from taxa_network.dissimilarity import compute_divergence_matrix
from taxa_network.statistical_validation import EDGE_COLUMNS, StatisticalValidator


@pytest.fixture
def community(abundance_table):
    return relative_abundance(prevalence_filtering(abundance_table, 20.0))


@pytest.fixture
def validator():
    return StatisticalValidator(TaxaNetworkConfig(n_permutations=99))


class TestAssociationMatrix:

    def test_correlation_diagonal(self, validator, community):
        matrix = validator.association_matrix(community, 'spearman')
        assert list(matrix.index) == list(community.index)
        assert np.allclose(np.diag(matrix), 1.0)
        assert np.allclose(matrix, matrix.T, equal_nan=True)

    def test_known_associations(self, validator, community):
        matrix = validator.association_matrix(community, 'spearman')
        assert matrix.loc['OTU1', 'OTU2'] > 0.8
        assert matrix.loc['OTU1', 'OTU3'] < -0.5

    def test_dissimilarity_diagonal(self, validator, community):
        matrix = validator.association_matrix(community, 'bray')
        assert np.allclose(np.diag(matrix), 0.0)

    def test_kld_uses_divergence_matrix(self, validator, community):
        matrix = validator.association_matrix(community, 'kld')
        expected = compute_divergence_matrix(community.to_numpy())
        assert np.array_equal(matrix.to_numpy(), expected)
        # the returned frame is an independent writable copy
        matrix.iloc[0, 1] = -1.0


class TestPvalueMatrix:

    def test_shape_range_and_diagonal(self, validator, community):
        p_values = validator.permutation_pvalue_matrix(community, 'spearman', rng=0)
        values = p_values.to_numpy()
        assert np.all(np.isnan(np.diag(values)))
        off_diagonal = values[~np.eye(len(values), dtype=bool)]
        assert np.all((off_diagonal >= 0) & (off_diagonal <= 0.5))
        assert np.allclose(values, values.T, equal_nan=True)

    def test_strong_pair_is_significant(self, validator, community):
        p_values = validator.permutation_pvalue_matrix(community, 'spearman', rng=0)
        assert p_values.loc['OTU1', 'OTU2'] == 0.0

    def test_reproducible(self, validator, community):
        first = validator.permutation_pvalue_matrix(community, 'kld', rng=11)
        second = validator.permutation_pvalue_matrix(community, 'kld', rng=11)
        pd.testing.assert_frame_equal(first, second)

    def test_permutation_override(self, validator, community):
        p_values = validator.permutation_pvalue_matrix(community, 'pearson', rng=0, n_permutations=10)
        assert p_values.shape == (len(community), len(community))

    def test_zero_permutations_override(self, validator, community):
        p_values = validator.permutation_pvalue_matrix(community, 'spearman', rng=0, n_permutations=0)
        off_diagonal = p_values.to_numpy()[~np.eye(len(community), dtype=bool)]
        assert np.all(off_diagonal == 0.5)


class TestCorrection:

    def test_bh_is_not_smaller_than_raw(self, validator, community):
        p_values = validator.permutation_pvalue_matrix(community, 'spearman', rng=0)
        q_values = validator.multiple_testing_correction(p_values)
        upper = np.triu_indices(len(community), k=1)
        assert np.all(q_values.to_numpy()[upper] >= p_values.to_numpy()[upper])
        assert np.allclose(q_values, q_values.T, equal_nan=True)

    def test_bonferroni(self, validator):
        p_values = pd.DataFrame([[np.nan, 0.01, 0.2],
                                 [0.01, np.nan, 0.3],
                                 [0.2, 0.3, np.nan]], index=list('abc'), columns=list('abc'))
        q_values = validator.multiple_testing_correction(p_values, method='bonferroni')
        assert q_values.loc['a', 'b'] == pytest.approx(0.03)
        assert q_values.loc['b', 'c'] == pytest.approx(0.9)

    def test_all_missing(self, validator):
        p_values = pd.DataFrame(np.nan, index=list('ab'), columns=list('ab'))
        q_values = validator.multiple_testing_correction(p_values)
        assert q_values.isna().all().all()


class TestEdges:

    @pytest.fixture
    def small(self):
        taxa = ['a', 'b', 'c']
        statistics = pd.DataFrame([[1.0, 0.9, -0.6],
                                   [0.9, 1.0, 0.1],
                                   [-0.6, 0.1, 1.0]], index=taxa, columns=taxa)
        p_values = pd.DataFrame([[np.nan, 0.0, 0.01],
                                 [0.0, np.nan, 0.4],
                                 [0.01, 0.4, np.nan]], index=taxa, columns=taxa)
        return statistics, p_values

    def test_correlation_edges(self, validator, small):
        statistics, p_values = small
        edges = validator.edge_table(statistics, p_values, p_values, 'spearman')
        assert list(edges.columns) == EDGE_COLUMNS
        assert len(edges) == 3
        significant = edges[edges['significant']]
        assert set(zip(significant['source'], significant['target'])) == {('a', 'b'), ('a', 'c')}
        assert edges.set_index(['source', 'target']).loc[('a', 'c'), 'sign'] == 'negative'

    def test_dissimilarity_edges_use_both_tails(self):
        validator = StatisticalValidator(TaxaNetworkConfig(dissimilarity_quantile=0.6))
        taxa = ['a', 'b', 'c']
        statistics = pd.DataFrame([[0, 2.0, 0.1],
                                   [2.0, 0, 0.5],
                                   [0.1, 0.5, 0]], index=taxa, columns=taxa, dtype=float)
        q_values = pd.DataFrame(0.0, index=taxa, columns=taxa)
        edges = validator.edge_table(statistics, q_values, q_values, 'kld').set_index(['source', 'target'])
        # cutoffs are 0.8 (exclusion) and 0.42 (co-presence)
        assert edges.loc[('a', 'b'), 'significant']
        assert edges.loc[('a', 'b'), 'sign'] == 'negative'
        assert edges.loc[('a', 'c'), 'significant']
        assert edges.loc[('a', 'c'), 'sign'] == 'positive'
        assert not edges.loc[('b', 'c'), 'significant']

    def test_combine_requires_all_methods(self, validator):
        spearman = pd.DataFrame({
            'source': ['a', 'a', 'b'], 'target': ['b', 'c', 'c'], 'method': 'spearman',
            'statistic': [0.9, -0.7, 0.1], 'p_value': [0.0, 0.0, 0.4], 'q_value': [0.0, 0.0, 0.4],
            'significant': [True, True, False], 'sign': ['positive', 'negative', 'positive'],
        })
        kld = spearman.assign(method='kld', statistic=[0.2, 3.0, 0.1],
                              significant=[False, True, True], sign='negative')
        combined = validator.combine_methods({'kld': kld, 'spearman': spearman})
        assert len(combined) == 1
        edge = combined.iloc[0]
        assert (edge['source'], edge['target']) == ('a', 'c')
        assert edge['weight'] == -0.7
        assert edge['sign'] == 'negative'
        assert edge['kld_statistic'] == 3.0
        assert 'spearman_q_value' in combined.columns

    def test_combine_requires_matching_signs(self, validator):
        spearman = pd.DataFrame({
            'source': ['a', 'a'], 'target': ['b', 'c'], 'method': 'spearman',
            'statistic': [0.9, 0.8], 'p_value': [0.0, 0.0], 'q_value': [0.0, 0.0],
            'significant': [True, True], 'sign': ['positive', 'positive'],
        })
        kld = spearman.assign(method='kld', statistic=[0.01, 4.0], sign=['positive', 'negative'])
        combined = validator.combine_methods({'spearman': spearman, 'kld': kld})
        assert list(zip(combined['source'], combined['target'])) == [('a', 'b')]
        assert combined.iloc[0]['sign'] == 'positive'

    def test_combine_empty(self, validator):
        assert validator.combine_methods({}).empty

    def test_significant_taxa(self):
        edges = pd.DataFrame({'source': ['a', 'b'], 'target': ['b', 'c']})
        assert StatisticalValidator.significant_taxa(edges) == ['a', 'b', 'c']


class TestValidateNetwork:

    def test_results_and_outputs(self, community, tmp_path):
        validator = StatisticalValidator(TaxaNetworkConfig(
            association_methods=['spearman', 'pearson'], n_permutations=99
        ))
        results = validator.validate_network(community, rng=0, output_dir=str(tmp_path))
        assert set(results) == {'statistics', 'p_values', 'q_values', 'edges', 'consensus_edges'}
        assert set(results['edges']) == {'spearman', 'pearson'}
        pairs = set(zip(results['consensus_edges']['source'], results['consensus_edges']['target']))
        assert ('OTU1', 'OTU2') in pairs
        assert (tmp_path / "spearman_pairs.csv").is_file()
        summary = json.loads((tmp_path / "association_summary.json").read_text())
        assert summary['spearman']['n_pairs'] == len(community) * (len(community) - 1) // 2

    def test_input_is_not_modified(self, validator, community):
        before = community.copy()
        validator.validate_network(community, rng=0)
        pd.testing.assert_frame_equal(community, before)

    def test_needs_two_taxa(self, validator, community):
        with pytest.raises(ValueError):
            validator.validate_network(community.iloc[:1])
