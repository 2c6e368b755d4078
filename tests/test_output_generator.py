"""
Tests for serialization and report writing.
"""

import json

import networkx as nx
import numpy as np
import pandas as pd

from taxa_network.config import TaxaNetworkConfig
from taxa_network.output_generator import OutputGenerator, to_serializable


class TestSerialization:

    def test_numpy_and_pandas(self):
        converted = to_serializable({
            'count': np.int64(3),
            'flag': np.bool_(True),
            'missing': np.nan,
            'array': np.array([1.5, np.inf]),
            'table': pd.DataFrame({'a': [1, 2]}),
            1: 'key',
        })
        assert converted == {
            'count': 3,
            'flag': True,
            'missing': None,
            'array': [1.5, None],
            'table': [{'a': 1}, {'a': 2}],
            '1': 'key',
        }
        json.dumps(converted)

    def test_graph(self):
        converted = to_serializable(nx.Graph([('a', 'b')]))
        assert converted == {'nodes': ['a', 'b'], 'edges': [['a', 'b']]}


class TestOutputGenerator:

    def test_files(self, tmp_path):
        generator = OutputGenerator(TaxaNetworkConfig())
        matrix = pd.DataFrame([[1.0, 0.2], [0.2, 1.0]], index=['a', 'b'], columns=['a', 'b'])
        generator.save_matrices({'spearman_statistics': matrix}, str(tmp_path))
        generator.save_edge_table(pd.DataFrame({'source': ['a'], 'target': ['b']}), str(tmp_path))
        generator.save_json({'value': np.float64(0.5)}, str(tmp_path))

        assert (tmp_path / "matrices" / "spearman_statistics.csv").is_file()
        assert (tmp_path / "network_edges.csv").is_file()
        assert json.loads((tmp_path / "results.json").read_text()) == {'value': 0.5}

    def test_text_report(self, tmp_path):
        generator = OutputGenerator(TaxaNetworkConfig())
        results = {
            'dataset_info': {'n_taxa': 2, 'n_samples': 10},
            'methods': ['spearman'],
            'network_metrics': {'nodes': 2, 'edges': 1},
            'hub_taxa': pd.DataFrame({'taxon': ['a'], 'degree': [1], 'hub_score': [2.0]}),
            'node_representation': pd.DataFrame({
                'group': ['Firmicutes'], 'q_over': [0.01], 'q_under': [1.0],
            }),
        }
        path = generator.generate_text_report(results, str(tmp_path))
        text = path.read_text()
        assert 'TAXA NETWORK ANALYSIS REPORT' in text
        assert 'n_samples: 10' in text
        assert 'Firmicutes: over-represented' in text

    def test_network_plot(self, tmp_path):
        generator = OutputGenerator(TaxaNetworkConfig())
        graph = nx.Graph()
        graph.add_edge('a', 'b', sign='positive', abs_weight=0.9)
        graph.add_edge('b', 'c', sign='negative', abs_weight=0.4)
        graph.nodes['a']['Phylum'] = 'Firmicutes'
        path = generator.plot_network(graph, str(tmp_path), color_by='Phylum')
        assert path.is_file()

    def test_empty_network_plot(self, tmp_path):
        generator = OutputGenerator(TaxaNetworkConfig())
        assert generator.plot_network(nx.Graph(), str(tmp_path)) is None
