# taxa_network/network_builder.py
"""
Co-occurrence graph construction and topology summaries.
"""

import logging
from typing import Dict, Optional

import networkx as nx
from networkx.algorithms import community
import numpy as np
import pandas as pd

from .config import TaxaNetworkConfig

logger = logging.getLogger(__name__)


def _plain(value):
    # GraphML only accepts builtin scalars
    if isinstance(value, np.generic):
        return value.item()
    return value


class NetworkBuilder:
    """Builds the taxon co-occurrence graph from significant edges."""

    def __init__(self, config: TaxaNetworkConfig):
        self.config = config

    def build_graph(self, edges: pd.DataFrame, node_attributes: Optional[pd.DataFrame] = None) -> nx.Graph:
        """
        Graph with one edge per row of ``edges``.

        Args:
            edges: Table with at least ``source``, ``target``, ``weight`` and
                ``sign`` columns; any other column becomes an edge attribute.
            node_attributes: Optional table indexed by taxon (e.g. taxonomy
                ranks) whose columns become node attributes.

        Returns:
            Undirected graph without isolated nodes. Every edge carries
            ``weight``, ``abs_weight`` and ``sign``.
        """
        graph = nx.Graph()
        if edges is not None and not edges.empty:
            attribute_columns = [c for c in edges.columns if c not in ('source', 'target')]
            for record in edges.to_dict('records'):
                attributes = {c: _plain(record[c]) for c in attribute_columns}
                attributes['abs_weight'] = abs(float(attributes.get('weight', 1.0)))
                graph.add_edge(record['source'], record['target'], **attributes)

        if node_attributes is not None:
            for node in graph.nodes():
                if node in node_attributes.index:
                    graph.nodes[node].update(
                        {str(k): _plain(v) for k, v in node_attributes.loc[node].items() if pd.notna(v)}
                    )

        logger.info(f"Built network with {graph.number_of_nodes()} nodes and {graph.number_of_edges()} edges")
        return graph

    def communities(self, graph: nx.Graph) -> Dict[str, int]:
        """Greedy modularity communities as node -> module number (largest first)."""
        if graph.number_of_edges() == 0:
            return {node: i for i, node in enumerate(graph.nodes())}
        modules = community.greedy_modularity_communities(graph, weight='abs_weight')
        return {node: i for i, module in enumerate(modules) for node in module}

    def network_metrics(self, graph: nx.Graph) -> Dict:
        """
        Summary of network topology.

        Returns:
            Dictionary with node/edge counts, density, mean degree, average
            clustering, connected components, signed edge counts, diameter of
            the largest component and modularity of the greedy communities.
        """
        n_nodes = graph.number_of_nodes()
        if n_nodes == 0:
            return {
                'nodes': 0, 'edges': 0, 'density': 0.0, 'mean_degree': 0.0,
                'average_clustering': 0.0, 'components': 0, 'positive_edges': 0,
                'negative_edges': 0, 'diameter': None, 'modularity': None, 'n_modules': 0,
            }

        signs = [d.get('sign') for _, _, d in graph.edges(data=True)]
        largest = max(nx.connected_components(graph), key=len)
        membership = self.communities(graph)
        modules = {}
        for node, module in membership.items():
            modules.setdefault(module, set()).add(node)
        modularity = None
        if graph.number_of_edges() > 0:
            modularity = float(community.modularity(graph, list(modules.values()), weight='abs_weight'))

        return {
            'nodes': int(n_nodes),
            'edges': int(graph.number_of_edges()),
            'density': float(nx.density(graph)),
            'mean_degree': float(np.mean([d for _, d in graph.degree()])),
            'average_clustering': float(nx.average_clustering(graph)),
            'components': int(nx.number_connected_components(graph)),
            'positive_edges': int(sum(s == 'positive' for s in signs)),
            'negative_edges': int(sum(s == 'negative' for s in signs)),
            'diameter': int(nx.diameter(graph.subgraph(largest))),
            'modularity': modularity,
            'n_modules': len(modules),
        }

    def hub_taxa(self, graph: nx.Graph, top_n: Optional[int] = 10) -> pd.DataFrame:
        """
        Rank taxa by a hub score (normalized degree plus normalized betweenness).
        """
        columns = ['taxon', 'degree', 'betweenness', 'closeness', 'clustering', 'module', 'hub_score']
        if graph.number_of_nodes() == 0:
            return pd.DataFrame(columns=columns)

        degree = dict(graph.degree())
        betweenness = nx.betweenness_centrality(graph)
        closeness = nx.closeness_centrality(graph)
        clustering = nx.clustering(graph)
        modules = self.communities(graph)

        hubs = pd.DataFrame({
            'taxon': list(degree),
            'degree': list(degree.values()),
            'betweenness': [betweenness[n] for n in degree],
            'closeness': [closeness[n] for n in degree],
            'clustering': [clustering[n] for n in degree],
            'module': [modules.get(n) for n in degree],
        }, columns=columns[:-1])
        hubs['hub_score'] = (
            hubs['degree'] / max(hubs['degree'].max(), 1)
            + hubs['betweenness'] / (hubs['betweenness'].max() + 1e-9)
        )
        hubs = hubs.sort_values(['hub_score', 'taxon'], ascending=[False, True]).reset_index(drop=True)
        return hubs.head(top_n) if top_n else hubs

    def adjacency_matrix(self, graph: nx.Graph, weight: str = 'weight') -> pd.DataFrame:
        """Weighted adjacency matrix indexed by node."""
        return nx.to_pandas_adjacency(graph, weight=weight)
