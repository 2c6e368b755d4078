# taxa_network/enrichment.py
"""
Taxonomic over/under-representation among network nodes and edges.

Nodes: for each taxon group at a rank, the number of network nodes from the
group is compared with the filtered background by a hypergeometric test.

Edges: for each pair of groups, the number of edges joining them is
compared with the share of all possible node pairs they account for by a
binomial test.
"""

import logging
import warnings
from itertools import combinations_with_replacement
from typing import Iterable, Optional

import networkx as nx
import numpy as np
import pandas as pd
from scipy.stats import binomtest, hypergeom
from statsmodels.stats.multitest import multipletests

from .config import TaxaNetworkConfig
from .data_loader import UNASSIGNED

logger = logging.getLogger(__name__)

NODE_COLUMNS = [
    'group', 'background_count', 'network_count', 'expected_count', 'fold_enrichment',
    'p_over', 'p_under', 'q_over', 'q_under',
]
EDGE_COLUMNS = [
    'group_a', 'group_b', 'possible_pairs', 'observed_edges', 'expected_edges', 'fold_enrichment',
    'p_over', 'p_under', 'q_over', 'q_under',
]


class TaxonomicEnrichment:
    """Representation tests of taxonomic groups in a co-occurrence network."""

    def __init__(self, config: TaxaNetworkConfig):
        self.config = config

    def _correct(self, results: pd.DataFrame) -> pd.DataFrame:
        for tail in ('over', 'under'):
            p_values = results[f'p_{tail}'].to_numpy(dtype=float)
            if len(p_values):
                results[f'q_{tail}'] = multipletests(
                    p_values, alpha=self.config.fdr_threshold, method=self.config.correction_method
                )[1]
            else:
                results[f'q_{tail}'] = []
        return results

    def node_representation(self, network_taxa: Iterable[str], background_taxonomy: pd.DataFrame,
                            rank: Optional[str] = None) -> pd.DataFrame:
        """
        Hypergeometric test of each group's share of the network nodes.

        Args:
            network_taxa: Feature IDs that are nodes of the network.
            background_taxonomy: Taxonomy (rank columns) of every feature that
                entered the analysis, indexed by feature ID.
            rank: Rank to group by (default: config.taxonomy_rank).

        Returns:
            One row per group with observed and expected node counts,
            over-representation ``P(X >= k)``, under-representation
            ``P(X <= k)`` and their corrected values.
        """
        rank = rank or self.config.taxonomy_rank
        background = background_taxonomy[rank].fillna(UNASSIGNED)
        network_taxa = list(dict.fromkeys(network_taxa))
        nodes = [t for t in network_taxa if t in background.index]
        missing = len(network_taxa) - len(nodes)
        if missing:
            logger.warning(f"{missing} network taxa have no taxonomy and are ignored in node representation.")

        population = len(background)
        drawn = len(nodes)
        network_groups = background.loc[nodes].value_counts()
        logger.info(f"Testing node representation of {background.nunique()} {rank} groups ({drawn}/{population} taxa in network)")

        rows = []
        for group, group_size in background.value_counts().sort_index().items():
            observed = int(network_groups.get(group, 0))
            expected = drawn * group_size / population if population else 0.0
            try:
                p_over = float(hypergeom.sf(observed - 1, population, group_size, drawn))
                p_under = float(hypergeom.cdf(observed, population, group_size, drawn))
            except Exception as e:
                warnings.warn(f"Hypergeometric test failed for {group}: {e}")
                p_over = p_under = 1.0
            rows.append({
                'group': group,
                'background_count': int(group_size),
                'network_count': observed,
                'expected_count': float(expected),
                'fold_enrichment': float(observed / expected) if expected else np.nan,
                'p_over': min(p_over, 1.0),
                'p_under': min(p_under, 1.0),
            })

        results = pd.DataFrame(rows, columns=NODE_COLUMNS[:7])
        return self._correct(results)[NODE_COLUMNS]

    def edge_representation(self, graph: nx.Graph, node_taxonomy: pd.DataFrame,
                            rank: Optional[str] = None) -> pd.DataFrame:
        """
        Binomial test of the edges joining each pair of groups.

        The expected probability that an edge joins groups a and b is the
        fraction of all node pairs that are (a, b) pairs: ``C(n_a, 2) / C(N, 2)``
        within a group, ``n_a * n_b / C(N, 2)`` between groups.

        Args:
            graph: Co-occurrence network whose nodes are feature IDs.
            node_taxonomy: Taxonomy (rank columns) indexed by feature ID.
            rank: Rank to group by (default: config.taxonomy_rank).

        Returns:
            One row per group pair with at least one possible node pair.
        """
        rank = rank or self.config.taxonomy_rank
        nodes = list(graph.nodes())
        n_edges = graph.number_of_edges()
        if n_edges == 0 or len(nodes) < 2:
            logger.warning("Network has no edges; skipping edge representation tests.")
            return pd.DataFrame(columns=EDGE_COLUMNS)

        groups = node_taxonomy[rank].reindex(nodes).fillna(UNASSIGNED)
        group_sizes = groups.value_counts().sort_index()
        total_pairs = len(nodes) * (len(nodes) - 1) / 2

        observed_counts = {}
        for u, v in graph.edges():
            key = tuple(sorted((groups[u], groups[v])))
            observed_counts[key] = observed_counts.get(key, 0) + 1

        rows = []
        for group_a, group_b in combinations_with_replacement(group_sizes.index, 2):
            n_a, n_b = int(group_sizes[group_a]), int(group_sizes[group_b])
            possible = n_a * (n_a - 1) / 2 if group_a == group_b else n_a * n_b
            if possible == 0:
                continue
            probability = possible / total_pairs
            observed = observed_counts.get((group_a, group_b), 0)
            expected = n_edges * probability
            try:
                p_over = binomtest(observed, n_edges, probability, alternative='greater').pvalue
                p_under = binomtest(observed, n_edges, probability, alternative='less').pvalue
            except Exception as e:
                warnings.warn(f"Binomial test failed for {group_a}-{group_b}: {e}")
                p_over = p_under = 1.0
            rows.append({
                'group_a': group_a,
                'group_b': group_b,
                'possible_pairs': int(possible),
                'observed_edges': int(observed),
                'expected_edges': float(expected),
                'fold_enrichment': float(observed / expected) if expected else np.nan,
                'p_over': float(p_over),
                'p_under': float(p_under),
            })

        logger.info(f"Tested edge representation for {len(rows)} {rank} group pairs over {n_edges} edges")
        results = pd.DataFrame(rows, columns=EDGE_COLUMNS[:8])
        return self._correct(results)[EDGE_COLUMNS]
