# taxa_network/taxa_network.py
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .classifier import RandomForestAnalysis
from .config import TaxaNetworkConfig
from .data_loader import (
    UNASSIGNED,
    DataLoader,
    collapse_to_rank,
    normalize_table,
    prevalence_filtering,
)
from .enrichment import TaxonomicEnrichment
from .network_builder import NetworkBuilder
from .output_generator import OutputGenerator
from .statistical_validation import StatisticalValidator

logger = logging.getLogger(__name__)


class TaxaNetwork:
    """
    Orchestrates the co-occurrence network and Random Forest workflows.
    """

    def __init__(self, config: Optional[TaxaNetworkConfig] = None):
        self.config = (config or TaxaNetworkConfig()).validate()
        logger.info(f"Initializing TaxaNetwork with config: {vars(self.config)}")
        self.loader = DataLoader()
        self.validator = StatisticalValidator(self.config)
        self.builder = NetworkBuilder(self.config)
        self.enrichment = TaxonomicEnrichment(self.config)
        self.output_generator = OutputGenerator(self.config)

    def _load_and_preprocess(self, table_path: str, taxonomy_path: Optional[str],
                             output_dir: Optional[str]) -> Tuple[pd.DataFrame, pd.DataFrame, Optional[pd.DataFrame]]:
        """Load, optionally collapse, filter and normalize; returns raw, normalized and taxonomy."""
        table = self.loader.load_abundance_table(table_path)
        taxonomy = self.loader.load_taxonomy(taxonomy_path) if taxonomy_path else None

        if self.config.collapse_rank:
            if taxonomy is None:
                logger.warning("collapse_rank is set but no taxonomy was given; keeping features.")
            else:
                table, taxonomy = collapse_to_rank(table, taxonomy, self.config.collapse_rank)

        filtered = prevalence_filtering(table, self.config.prevalence_threshold)
        normalized = normalize_table(filtered, self.config.normalization)
        if taxonomy is not None:
            taxonomy = taxonomy.reindex(filtered.index).fillna(UNASSIGNED)

        if output_dir and self.config.include_matrices:
            self.output_generator.save_matrices({'filtered_table': filtered, 'normalized_table': normalized}, output_dir)
        return filtered, normalized, taxonomy

    def run_network_pipeline(self, table_path: str, taxonomy_path: Optional[str] = None,
                             output_dir: Optional[str] = None) -> Dict:
        """
        Build a significance-filtered co-occurrence network.

        Args:
            table_path (str): Abundance table (features x samples, CSV/TSV).
            taxonomy_path (Optional[str]): Feature taxonomy; enables node
                attributes and representation tests.
            output_dir (Optional[str]): Directory for all outputs.

        Returns:
            dict: Pipeline results.
        """
        self.config.check_network_methods()
        logger.info("📥 Stage 1: Input Processing")
        filtered, normalized, taxonomy = self._load_and_preprocess(table_path, taxonomy_path, output_dir)
        results = {
            'dataset_info': {
                'n_taxa': int(normalized.shape[0]),
                'n_samples': int(normalized.shape[1]),
                'normalization': self.config.normalization,
                'prevalence_threshold': self.config.prevalence_threshold,
            },
            'methods': list(self.config.association_methods),
        }

        logger.info("🧮 Stage 2: Association Statistics")
        rng = np.random.default_rng(self.config.random_state)
        validation = self.validator.validate_network(normalized, rng=rng, output_dir=output_dir)
        edges = validation['consensus_edges']
        results['edges'] = edges

        logger.info("🔗 Stage 3: Network Construction")
        graph = self.builder.build_graph(edges, node_attributes=taxonomy)
        results['graph'] = graph
        results['network_metrics'] = self.builder.network_metrics(graph)
        results['hub_taxa'] = self.builder.hub_taxa(graph)

        if taxonomy is not None:
            logger.info("🧬 Stage 4: Taxonomic Representation")
            results['node_representation'] = self.enrichment.node_representation(
                graph.nodes(), taxonomy, self.config.taxonomy_rank
            )
            results['edge_representation'] = self.enrichment.edge_representation(
                graph, taxonomy, self.config.taxonomy_rank
            )

        if output_dir:
            logger.info("📤 Stage 5: Output Generation")
            if self.config.include_matrices:
                matrices = {}
                for kind in ('statistics', 'p_values', 'q_values'):
                    for method, matrix in validation[kind].items():
                        matrices[f"{method}_{kind}"] = matrix
                self.output_generator.save_matrices(matrices, output_dir)
                self.output_generator.save_matrices(
                    {'adjacency': self.builder.adjacency_matrix(graph)}, output_dir
                )
            self.output_generator.save_edge_table(edges, output_dir)
            self.output_generator.save_graph(graph, output_dir)
            for key in ('hub_taxa', 'node_representation', 'edge_representation'):
                if key in results:
                    results[key].to_csv(Path(output_dir) / f"{key}.csv", index=False)
            self._write_reports(results, output_dir)
            if self.config.generate_plots:
                color_by = self.config.taxonomy_rank if taxonomy is not None else None
                self.output_generator.plot_network(graph, output_dir, color_by=color_by)

        logger.info("✅ Network pipeline completed successfully")
        return results

    def run_classification_pipeline(self, table_path: str, metadata_path: str, label_column: str,
                                    taxonomy_path: Optional[str] = None,
                                    output_dir: Optional[str] = None) -> Dict:
        """
        Train and evaluate a Random Forest discriminating metadata groups.

        Args:
            table_path (str): Abundance table (features x samples, CSV/TSV).
            metadata_path (str): Sample metadata (CSV/TSV).
            label_column (str): Metadata column to predict.
            taxonomy_path (Optional[str]): Feature taxonomy, needed only when
                collapse_rank is set.
            output_dir (Optional[str]): Directory for all outputs.

        Returns:
            dict: Pipeline results.
        """
        logger.info("📥 Stage 1: Input Processing")
        _, normalized, _ = self._load_and_preprocess(table_path, taxonomy_path, output_dir)
        metadata = self.loader.load_metadata(metadata_path)
        data, labels = self.loader.align_data(normalized, metadata, label_column)

        logger.info("🌳 Stage 2: Random Forest")
        model = RandomForestAnalysis(self.config)
        model_results = model.fit(data, labels)
        importances = model.feature_importances()

        results = {
            'dataset_info': {
                'n_samples': int(len(data)),
                'n_features': int(data.shape[1]),
                'label_column': label_column,
                'normalization': self.config.normalization,
            },
            'model': model_results,
            'feature_importances': importances,
        }

        if output_dir:
            logger.info("📤 Stage 3: Output Generation")
            Path(output_dir).mkdir(parents=True, exist_ok=True)
            importances.to_csv(Path(output_dir) / "feature_importances.csv", index_label="taxon")
            self._write_reports(results, output_dir)
            if self.config.generate_plots:
                self.output_generator.plot_importances(importances, output_dir)

        logger.info("✅ Classification pipeline completed successfully")
        return results

    def _write_reports(self, results: Dict, output_dir: str) -> None:
        if 'text' in self.config.output_formats:
            self.output_generator.generate_text_report(results, output_dir)
        if 'json' in self.config.output_formats:
            summary = {k: v for k, v in results.items() if k != 'graph'}
            if 'feature_importances' in summary:
                summary['feature_importances'] = summary['feature_importances'].reset_index(names='taxon')
            self.output_generator.save_json(summary, output_dir)


def run_taxa_network_analysis(**kwargs) -> Dict:
    """
    Entry-point function for the co-occurrence network pipeline.
    """
    config = kwargs.pop('config', None) or TaxaNetworkConfig()
    return TaxaNetwork(config).run_network_pipeline(**kwargs)


def run_classification_analysis(**kwargs) -> Dict:
    """
    Entry-point function for the Random Forest pipeline.
    """
    config = kwargs.pop('config', None) or TaxaNetworkConfig()
    return TaxaNetwork(config).run_classification_pipeline(**kwargs)
