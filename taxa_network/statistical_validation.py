# taxa_network/statistical_validation.py
"""
Statistical validation module for taxa_network.
Implements the significance layer of the co-occurrence network:
1. Pairwise association matrices (Spearman, Pearson, Bray-Curtis, KL divergence)
2. Permutation (optionally bootstrap) p-values for every taxon pair
3. Multiple testing correction (Benjamini-Hochberg by default)
4. Edge selection by corrected p-value and effect size
5. Agreement across association methods

Every method returns new DataFrames; input tables are never modified.
"""

import json
import logging
import warnings
from functools import reduce
from itertools import combinations
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

from .config import TaxaNetworkConfig
from .dissimilarity import (
    AssociationMethod,
    RandomSource,
    compute_divergence_matrix,
    estimate_pair_pvalue,
    pair_statistic,
)

logger = logging.getLogger(__name__)

EDGE_COLUMNS = ['source', 'target', 'method', 'statistic', 'p_value', 'q_value', 'significant', 'sign']


def _upper_triangle(n: int):
    return np.triu_indices(n, k=1)


class StatisticalValidator:
    """
    Significance testing for taxon-taxon associations.

    Tables passed to this class are oriented taxa x samples: each row is
    the abundance vector of one taxon.
    """

    def __init__(self, config: TaxaNetworkConfig):
        """
        Initialize the StatisticalValidator.

        Args:
            config: Configuration object with permutation count, bootstrap
                flag, pseudocount, thresholds and correction method.
        """
        self.config = config
        self.alpha = config.fdr_threshold
        self.n_permutations = config.n_permutations

    def association_matrix(self, table: pd.DataFrame,
                           method: Union[str, AssociationMethod]) -> pd.DataFrame:
        """
        Statistic of ``method`` for every pair of taxa.

        Args:
            table: Taxa x samples abundance table.
            method: Association method name.

        Returns:
            Symmetric taxa x taxa DataFrame. The diagonal is 1 for correlations
            and 0 for dissimilarities.
        """
        method = AssociationMethod.parse(method)
        taxa = list(table.index)
        if method is AssociationMethod.KLD:
            values = np.array(compute_divergence_matrix(table.to_numpy(), self.config.pseudocount))
        else:
            rows = table.to_numpy(dtype=float)
            n = len(taxa)
            values = np.zeros((n, n)) if method.is_dissimilarity else np.eye(n)
            for i, j in combinations(range(n), 2):
                values[i, j] = values[j, i] = pair_statistic(
                    rows[i], rows[j], method, self.config.pseudocount
                )
        return pd.DataFrame(values, index=taxa, columns=taxa)

    def permutation_pvalue_matrix(self, table: pd.DataFrame,
                                  method: Union[str, AssociationMethod],
                                  rng: RandomSource = None,
                                  n_permutations: Optional[int] = None) -> pd.DataFrame:
        """
        Empirical p-value for every pair of taxa.

        Each unordered pair is tested once (row i permuted against row j) and
        the value mirrored.

        Args:
            table: Taxa x samples abundance table.
            method: Association method name.
            rng: Generator (or seed) shared by all pairs of this run.
            n_permutations: Number of permutations (overrides config if provided).

        Returns:
            Symmetric taxa x taxa DataFrame of p-values in [0, 0.5] with a NaN
            diagonal.
        """
        method = AssociationMethod.parse(method)
        if n_permutations is None:
            n_permutations = self.n_permutations
        rng = np.random.default_rng(rng)
        taxa = list(table.index)
        rows = table.to_numpy(dtype=float)
        n = len(taxa)
        n_pairs = n * (n - 1) // 2
        logger.info(
            f"🔀 Running {n_permutations} permutations for {n_pairs} taxon pairs ({method.value}"
            f"{', bootstrap' if self.config.bootstrap else ''})..."
        )

        values = np.full((n, n), np.nan)
        neutral = 0
        for count, (i, j) in enumerate(combinations(range(n), 2), 1):
            p_value = estimate_pair_pvalue(
                rows, i, j,
                permutations=n_permutations,
                method=method,
                bootstrap=self.config.bootstrap,
                rng=rng,
                pseudocount=self.config.pseudocount,
            )
            values[i, j] = values[j, i] = p_value
            neutral += p_value == 0.5
            if count % 1000 == 0:
                logger.info(f"   Pair {count}/{n_pairs}")

        logger.debug(f"{neutral}/{n_pairs} pairs returned the neutral p-value for {method.value}")
        return pd.DataFrame(values, index=taxa, columns=taxa)

    def multiple_testing_correction(self, pvalue_matrix: pd.DataFrame,
                                    method: Optional[str] = None) -> pd.DataFrame:
        """
        Correct the upper-triangle p-values of a symmetric matrix.

        Available methods are those of statsmodels ``multipletests``, e.g.
        'fdr_bh', 'fdr_by', 'bonferroni', 'holm'.

        Args:
            pvalue_matrix: Symmetric p-value matrix.
            method: Correction method (default: config.correction_method).

        Returns:
            Symmetric matrix of corrected p-values with a NaN diagonal.
        """
        method = method or self.config.correction_method
        n = pvalue_matrix.shape[0]
        corrected = np.full((n, n), np.nan)
        upper = _upper_triangle(n)
        p_values = pvalue_matrix.to_numpy(dtype=float)[upper]
        finite = np.isfinite(p_values)

        if finite.any():
            logger.info(f"🔧 Applying multiple testing correction using {method} to {int(finite.sum())} pairs...")
            q_values = np.full(p_values.shape, np.nan)
            q_values[finite] = multipletests(p_values[finite], alpha=self.alpha, method=method)[1]
            corrected[upper] = q_values
            corrected.T[upper] = q_values
        else:
            logger.warning("No finite p-values to correct.")

        return pd.DataFrame(corrected, index=pvalue_matrix.index, columns=pvalue_matrix.columns)

    def edge_table(self, statistics: pd.DataFrame, pvalues: pd.DataFrame, qvalues: pd.DataFrame,
                   method: Union[str, AssociationMethod]) -> pd.DataFrame:
        """
        Long-format table of all taxon pairs with significance calls.

        A correlation edge is significant when ``q <= fdr_threshold`` and
        ``|r| >= correlation_threshold``; its sign follows r. A dissimilarity
        edge is significant when ``q <= fdr_threshold`` and the dissimilarity
        lies in either tail of all pairs: at or above the
        ``dissimilarity_quantile`` quantile (mutual exclusion, signed negative)
        or at or below the ``1 - dissimilarity_quantile`` quantile
        (co-presence, signed positive).
        """
        method = AssociationMethod.parse(method)
        taxa = list(statistics.index)
        upper = _upper_triangle(len(taxa))
        stat_values = statistics.to_numpy(dtype=float)[upper]
        p_values = pvalues.to_numpy(dtype=float)[upper]
        q_values = qvalues.to_numpy(dtype=float)[upper]

        with np.errstate(invalid='ignore'):
            passes_fdr = q_values <= self.config.fdr_threshold
            if method.is_dissimilarity:
                finite = stat_values[np.isfinite(stat_values)]
                if finite.size:
                    high = np.quantile(finite, self.config.dissimilarity_quantile)
                    low = np.quantile(finite, 1.0 - self.config.dissimilarity_quantile)
                else:
                    high, low = np.inf, -np.inf
                exclusion = stat_values >= high
                passes_effect = exclusion | (stat_values <= low)
                sign = np.where(exclusion, 'negative', 'positive')
            else:
                passes_effect = np.abs(stat_values) >= self.config.correlation_threshold
                sign = np.where(stat_values >= 0, 'positive', 'negative')

        edges = pd.DataFrame({
            'source': [taxa[i] for i in upper[0]],
            'target': [taxa[j] for j in upper[1]],
            'method': method.value,
            'statistic': stat_values,
            'p_value': p_values,
            'q_value': q_values,
            'significant': passes_fdr & passes_effect,
            'sign': sign,
        }, columns=EDGE_COLUMNS)
        logger.info(f"{method.value}: {int(edges['significant'].sum())}/{len(edges)} significant pairs")
        return edges

    def combine_methods(self, edge_tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        """
        Keep only pairs that are significant under every method with the same
        sign.

        The statistic, p- and q-value of each method are kept as
        ``<method>_statistic`` style columns. The sign and weight come from the
        first correlation method when there is one, otherwise from the first
        method.

        Returns:
            DataFrame with ``source``, ``target``, ``sign``, per-method
            columns and a ``weight`` column (statistic of the sign method).
        """
        if not edge_tables:
            return pd.DataFrame(columns=['source', 'target', 'sign', 'weight'])

        methods = list(edge_tables)
        sign_method = next(
            (m for m in methods if not AssociationMethod.parse(m).is_dissimilarity), methods[0]
        )

        frames = []
        for method in methods:
            table = edge_tables[method][['source', 'target', 'statistic', 'p_value', 'q_value', 'significant', 'sign']]
            renamed = table.rename(columns={
                'statistic': f'{method}_statistic',
                'p_value': f'{method}_p_value',
                'q_value': f'{method}_q_value',
                'significant': f'{method}_significant',
                'sign': f'{method}_sign',
            })
            frames.append(renamed)

        merged = reduce(lambda left, right: left.merge(right, on=['source', 'target'], how='inner'), frames)
        agreed = np.logical_and.reduce(
            [merged[f'{m}_significant'].to_numpy(dtype=bool) for m in methods]
            + [(merged[f'{m}_sign'] == merged[f'{sign_method}_sign']).to_numpy() for m in methods]
        )
        combined = merged.loc[agreed].copy()
        combined['sign'] = combined[f'{sign_method}_sign']
        combined['weight'] = combined[f'{sign_method}_statistic']
        combined = combined.drop(columns=[f'{m}_significant' for m in methods] + [f'{m}_sign' for m in methods])
        logger.info(f"Found {len(combined)} edges significant with matching sign under all of {methods}")
        return combined.reset_index(drop=True)

    def validate_network(self, table: pd.DataFrame, rng: RandomSource = None,
                         output_dir: Optional[str] = None) -> Dict:
        """
        Run statistics, p-values, correction and edge calls for every
        configured method.

        Args:
            table: Taxa x samples (filtered, normalized) abundance table.
            rng: Generator (or seed) for all permutations of this run.
            output_dir: Directory to save the per-method edge tables (optional).

        Returns:
            Dictionary with per-method 'statistics', 'p_values', 'q_values',
            'edges' and the combined 'consensus_edges'.
        """
        if table.shape[0] < 2:
            raise ValueError("At least two taxa are required to build a network.")

        rng = np.random.default_rng(rng)
        results = {'statistics': {}, 'p_values': {}, 'q_values': {}, 'edges': {}}

        for method in self.config.association_methods:
            method = AssociationMethod.parse(method).value
            logger.info(f"🧮 Computing {method} associations for {table.shape[0]} taxa...")
            statistics = self.association_matrix(table, method)
            p_values = self.permutation_pvalue_matrix(table, method, rng)
            try:
                q_values = self.multiple_testing_correction(p_values)
            except Exception as e:
                warnings.warn(f"Multiple testing correction failed for {method}: {e}")
                q_values = pd.DataFrame(np.nan, index=p_values.index, columns=p_values.columns)
            results['statistics'][method] = statistics
            results['p_values'][method] = p_values
            results['q_values'][method] = q_values
            results['edges'][method] = self.edge_table(statistics, p_values, q_values, method)

        results['consensus_edges'] = self.combine_methods(results['edges'])

        if output_dir:
            output_dir = Path(output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            for method, edges in results['edges'].items():
                edges.to_csv(output_dir / f"{method}_pairs.csv", index=False)
            summary = {
                method: {
                    'n_pairs': int(len(edges)),
                    'n_significant': int(edges['significant'].sum()),
                }
                for method, edges in results['edges'].items()
            }
            summary['consensus'] = {'n_edges': int(len(results['consensus_edges']))}
            with open(output_dir / "association_summary.json", 'w') as f:
                json.dump(summary, f, indent=2)
            logger.info(f"Saved association results to: {output_dir}")

        return results

    @staticmethod
    def significant_taxa(edges: pd.DataFrame) -> List[str]:
        """Taxa taking part in at least one edge, in first-seen order."""
        if edges.empty:
            return []
        return list(dict.fromkeys(list(edges['source']) + list(edges['target'])))
