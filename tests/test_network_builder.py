"""
Tests for graph construction, topology metrics and hub ranking.
"""

import networkx as nx
import numpy as np
import pandas as pd
import pytest

from taxa_network.config import TaxaNetworkConfig
from taxa_network.network_builder import NetworkBuilder


@pytest.fixture
def builder():
    return NetworkBuilder(TaxaNetworkConfig())


@pytest.fixture
def edges():
    """Two triangles joined through 'c'-'d'."""
    return pd.DataFrame({
        'source': ['a', 'a', 'b', 'c', 'd', 'd', 'e'],
        'target': ['b', 'c', 'c', 'd', 'e', 'f', 'f'],
        'weight': [0.9, 0.8, 0.7, -0.5, 0.9, 0.6, np.float64(0.8)],
        'sign': ['positive', 'positive', 'positive', 'negative', 'positive', 'positive', 'positive'],
        'spearman_q_value': np.zeros(7),
    })


class TestBuildGraph:

    def test_edges_and_attributes(self, builder, edges):
        graph = builder.build_graph(edges)
        assert graph.number_of_nodes() == 6
        assert graph.number_of_edges() == 7
        assert graph['c']['d']['abs_weight'] == 0.5
        assert graph['c']['d']['sign'] == 'negative'
        assert type(graph['e']['f']['weight']) is float

    def test_node_attributes(self, builder, edges):
        taxonomy = pd.DataFrame({'Phylum': ['Firmicutes', 'Bacteroidota']}, index=['a', 'zz'])
        graph = builder.build_graph(edges, node_attributes=taxonomy)
        assert graph.nodes['a']['Phylum'] == 'Firmicutes'
        assert 'zz' not in graph
        assert 'Phylum' not in graph.nodes['b']

    def test_empty_edges(self, builder):
        graph = builder.build_graph(pd.DataFrame(columns=['source', 'target', 'weight', 'sign']))
        assert graph.number_of_nodes() == 0

    def test_graphml_compatible(self, builder, edges, tmp_path):
        graph = builder.build_graph(edges)
        nx.write_graphml(graph, tmp_path / "network.graphml")


class TestMetrics:

    def test_two_triangles(self, builder, edges):
        graph = builder.build_graph(edges)
        metrics = builder.network_metrics(graph)
        assert metrics['nodes'] == 6
        assert metrics['edges'] == 7
        assert metrics['positive_edges'] == 6
        assert metrics['negative_edges'] == 1
        assert metrics['components'] == 1
        assert metrics['diameter'] == 3
        assert metrics['n_modules'] == 2
        assert metrics['modularity'] > 0
        assert metrics['density'] == pytest.approx(7 / 15)

    def test_empty_graph(self, builder):
        metrics = builder.network_metrics(nx.Graph())
        assert metrics['nodes'] == 0
        assert metrics['diameter'] is None

    def test_communities_split_triangles(self, builder, edges):
        modules = builder.communities(builder.build_graph(edges))
        assert modules['a'] == modules['b'] == modules['c']
        assert modules['d'] == modules['e'] == modules['f']
        assert modules['a'] != modules['d']


class TestHubs:

    def test_bridge_nodes_rank_first(self, builder, edges):
        hubs = builder.hub_taxa(builder.build_graph(edges))
        assert set(hubs['taxon'].iloc[:2]) == {'c', 'd'}
        assert list(hubs.columns) == ['taxon', 'degree', 'betweenness', 'closeness',
                                      'clustering', 'module', 'hub_score']

    def test_top_n(self, builder, edges):
        assert len(builder.hub_taxa(builder.build_graph(edges), top_n=3)) == 3
        assert len(builder.hub_taxa(builder.build_graph(edges), top_n=None)) == 6

    def test_empty(self, builder):
        assert builder.hub_taxa(nx.Graph()).empty


def test_adjacency_matrix(builder, edges):
    adjacency = builder.adjacency_matrix(builder.build_graph(edges))
    assert adjacency.loc['c', 'd'] == -0.5
    assert adjacency.loc['d', 'c'] == -0.5
    assert adjacency.loc['a', 'f'] == 0.0
