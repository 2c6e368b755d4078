# taxa_network/output_generator.py
"""
Writes analysis results: matrices, edge tables, GraphML networks, JSON
summaries, a plain-text report and optional figures.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional

import matplotlib

matplotlib.use('Agg')
import matplotlib.pyplot as plt  # noqa: E402
import networkx as nx  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402

from .config import TaxaNetworkConfig  # noqa: E402

logger = logging.getLogger(__name__)


def to_serializable(obj):
    """Recursively convert numpy / pandas objects into JSON-compatible values."""
    if isinstance(obj, dict):
        return {str(k): to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_serializable(v) for v in obj]
    if isinstance(obj, pd.DataFrame):
        return to_serializable(obj.to_dict(orient='records'))
    if isinstance(obj, pd.Series):
        return to_serializable(obj.to_dict())
    if isinstance(obj, np.ndarray):
        return to_serializable(obj.tolist())
    if isinstance(obj, np.generic):
        obj = obj.item()
    if isinstance(obj, float) and not np.isfinite(obj):
        return None
    if isinstance(obj, nx.Graph):
        return {'nodes': [str(n) for n in obj.nodes()], 'edges': [[str(u), str(v)] for u, v in obj.edges()]}
    return obj


class OutputGenerator:
    """Persists pipeline results under an output directory."""

    def __init__(self, config: TaxaNetworkConfig):
        self.config = config

    @staticmethod
    def _directory(output_dir: str) -> Path:
        path = Path(output_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def save_matrices(self, matrices: Dict[str, pd.DataFrame], output_dir: str) -> None:
        """Write each named matrix to ``<name>.csv`` under ``output_dir/matrices``."""
        matrices_dir = self._directory(Path(output_dir) / "matrices")
        for name, matrix in matrices.items():
            matrix.to_csv(matrices_dir / f"{name}.csv")
        logger.info(f"Saved {len(matrices)} matrices to: {matrices_dir}")

    def save_edge_table(self, edges: pd.DataFrame, output_dir: str, filename: str = "network_edges.csv") -> Path:
        path = self._directory(output_dir) / filename
        edges.to_csv(path, index=False)
        logger.info(f"Saved {len(edges)} edges to: {path}")
        return path

    def save_graph(self, graph: nx.Graph, output_dir: str, filename: str = "cooccurrence_network.graphml") -> Path:
        path = self._directory(output_dir) / filename
        nx.write_graphml(graph, path)
        logger.info(f"Saved network graph to: {path}")
        return path

    def save_json(self, results: Dict, output_dir: str, filename: str = "results.json") -> Path:
        path = self._directory(output_dir) / filename
        with open(path, 'w') as f:
            json.dump(to_serializable(results), f, indent=2)
        logger.info(f"Saved results to: {path}")
        return path

    def generate_text_report(self, results: Dict, output_dir: str, filename: str = "report.txt") -> Path:
        """Human readable summary of a network or classification run."""
        lines = ["=" * 70, "TAXA NETWORK ANALYSIS REPORT", "=" * 70]

        info = results.get('dataset_info', {})
        if info:
            lines.append("")
            lines.append("Dataset")
            for key, value in info.items():
                lines.append(f"  {key}: {value}")

        metrics = results.get('network_metrics')
        if metrics:
            lines.append("")
            lines.append(f"Network (methods: {', '.join(results.get('methods', []))})")
            for key, value in metrics.items():
                lines.append(f"  {key:20s}: {value}")

        hubs = results.get('hub_taxa')
        if isinstance(hubs, pd.DataFrame) and not hubs.empty:
            lines.append("")
            lines.append("Hub taxa")
            for row in hubs.head(10).itertuples(index=False):
                lines.append(f"  {row.taxon} (degree {row.degree}, hub score {row.hub_score:.3f})")

        for key, title in (('node_representation', 'Node representation'),
                           ('edge_representation', 'Edge representation')):
            table = results.get(key)
            if isinstance(table, pd.DataFrame) and not table.empty:
                significant = table[(table['q_over'] <= self.config.fdr_threshold)
                                    | (table['q_under'] <= self.config.fdr_threshold)]
                lines.append("")
                lines.append(f"{title}: {len(significant)}/{len(table)} groups with q <= {self.config.fdr_threshold}")
                for row in significant.to_dict('records'):
                    label = row.get('group') or f"{row['group_a']} - {row['group_b']}"
                    direction = 'over' if row['q_over'] <= row['q_under'] else 'under'
                    lines.append(f"  {label}: {direction}-represented "
                                 f"(q = {min(row['q_over'], row['q_under']):.3g})")

        model = results.get('model')
        if model:
            lines.append("")
            lines.append(f"Random Forest ({model['task']})")
            for key in ('oob_error', 'baseline_error', 'error_ratio', 'test_accuracy', 'test_roc_auc',
                        'oob_r2', 'oob_mse', 'baseline_mse', 'test_mse', 'test_r2'):
                if key in model and model[key] is not None:
                    lines.append(f"  {key:20s}: {model[key]:.4f}")
            cv = model.get('cross_validation')
            if cv:
                lines.append(f"  {'cv_' + cv['scoring']:20s}: {cv['mean']:.4f} +/- {cv['std']:.4f}")
            permutation = model.get('permutation_test')
            if permutation:
                lines.append(f"  {'permutation_p':20s}: {permutation['p_value']:.4f}")

        importances = results.get('feature_importances')
        if isinstance(importances, pd.DataFrame) and not importances.empty:
            lines.append("")
            lines.append("Top features")
            for taxon, row in importances.head(10).iterrows():
                lines.append(f"  {taxon}: {row['permutation_importance']:.4f}")

        path = self._directory(output_dir) / filename
        path.write_text("\n".join(lines) + "\n")
        logger.info(f"Saved text report to: {path}")
        return path

    def plot_network(self, graph: nx.Graph, output_dir: str, filename: str = "cooccurrence_network.png",
                     color_by: Optional[str] = None) -> Optional[Path]:
        """Spring layout of the network; edges red (positive) or blue (negative)."""
        if graph.number_of_nodes() == 0:
            logger.warning("Network is empty; skipping network plot.")
            return None

        fig, ax = plt.subplots(figsize=(10, 10))
        pos = nx.spring_layout(graph, seed=self.config.random_state, weight='abs_weight')
        edge_colors = ['#d62728' if d.get('sign') == 'positive' else '#1f77b4'
                       for _, _, d in graph.edges(data=True)]
        node_colors = '#999999'
        if color_by:
            groups = sorted({str(graph.nodes[n].get(color_by, 'Unassigned')) for n in graph.nodes()})
            palette = plt.get_cmap('tab20')
            lookup = {g: palette(i % 20) for i, g in enumerate(groups)}
            node_colors = [lookup[str(graph.nodes[n].get(color_by, 'Unassigned'))] for n in graph.nodes()]
        degrees = dict(graph.degree())
        nx.draw_networkx_edges(graph, pos, ax=ax, edge_color=edge_colors, alpha=0.5)
        nx.draw_networkx_nodes(graph, pos, ax=ax, node_color=node_colors,
                               node_size=[50 + 30 * degrees[n] for n in graph.nodes()], alpha=0.8)
        ax.set_axis_off()
        path = self._directory(output_dir) / filename
        fig.savefig(path, dpi=150, bbox_inches='tight')
        plt.close(fig)
        logger.info(f"Saved network plot to: {path}")
        return path

    def plot_importances(self, importances: pd.DataFrame, output_dir: str,
                         filename: str = "feature_importances.png", top_n: int = 20) -> Optional[Path]:
        """Horizontal bar chart of the top permutation importances."""
        if importances is None or importances.empty:
            return None
        top = importances.head(top_n).iloc[::-1]
        fig, ax = plt.subplots(figsize=(8, max(3, 0.3 * len(top))))
        ax.barh([str(i) for i in top.index], top['permutation_importance'],
                xerr=top['permutation_importance_std'], color='#4c72b0')
        ax.set_xlabel('Mean decrease in score (permutation)')
        path = self._directory(output_dir) / filename
        fig.savefig(path, dpi=150, bbox_inches='tight')
        plt.close(fig)
        logger.info(f"Saved feature importance plot to: {path}")
        return path
