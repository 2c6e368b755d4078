# taxa_network/config.py
"""
Configuration module for taxa_network.
This file defines a dataclass holding the tunable parameters of the
co-occurrence network and Random Forest workflows, so that thresholds,
permutation counts and model settings can be changed in one place.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .dissimilarity import AssociationMethod
from .exceptions import ConfigurationError, UnsupportedMethod

NORMALIZATION_METHODS = ('relative', 'clr', 'presence_absence', 'none')
TAXONOMY_RANKS = ('Domain', 'Phylum', 'Class', 'Order', 'Family', 'Genus', 'Species')


@dataclass
class TaxaNetworkConfig:
    """
    Configuration class for taxa_network pipeline parameters.

    Attributes:
        prevalence_threshold (float): Minimum percentage (0-100) of samples in
            which a feature must be non-zero to be kept (default: 20).
        normalization (str): Per-sample normalization applied before the
            association statistics and the Random Forest ('relative', 'clr',
            'presence_absence' or 'none', default: 'relative').
        pseudocount (float): Zero replacement for the Kullback-Leibler
            statistic (default: 1e-8).
        association_methods (List[str]): Statistics computed between every
            taxon pair; an edge must be significant under all of them
            (default: ['spearman', 'kld']).
        n_permutations (int): Permutations per taxon pair for the empirical
            p-values (default: 1000).
        bootstrap (bool): Combine the permutation null with a bootstrap
            distribution (default: False).
        correlation_threshold (float): Minimum absolute correlation for a
            correlation edge (default: 0.3).
        dissimilarity_quantile (float): Quantile of the off-diagonal
            dissimilarities a dissimilarity edge must reach (default: 0.9).
        fdr_threshold (float): Maximum corrected p-value for an edge
            (default: 0.05).
        correction_method (str): statsmodels multiple testing method
            (default: 'fdr_bh').
        taxonomy_rank (str): Rank at which node and edge representation is
            tested (default: 'Phylum').
        collapse_rank (Optional[str]): Collapse features to this rank before
            analysis; None keeps individual features (default: None).
        n_estimators (int): Trees in the Random Forest (default: 501).
        max_features (Optional[str]): Features considered per split
            ('sqrt', 'log2' or None for all, default: 'sqrt').
        test_size (float): Held-out fraction of samples (default: 0.2).
        cross_validation_folds (int): Stratified folds for cross-validation
            (default: 5).
        n_model_permutations (int): Label permutations used to test model
            significance (default: 100).
        max_classes_for_classification (int): Numeric labels with more
            distinct values than this are modelled by regression
            (default: 10).
        random_state (int): Seed for every stochastic step (default: 42).
        output_formats (List[str]): Result formats ('text', 'json').
        include_matrices (bool): Write statistic and p-value matrices.
        generate_plots (bool): Draw the network and importance figures.
    """
    # Filtering and normalization
    prevalence_threshold: float = 20.0
    normalization: str = 'relative'
    collapse_rank: Optional[str] = None

    # Association statistics
    pseudocount: float = 1e-8
    association_methods: List[str] = field(default_factory=lambda: ['spearman', 'kld'])
    n_permutations: int = 1000
    bootstrap: bool = False

    # Edge selection
    correlation_threshold: float = 0.3
    dissimilarity_quantile: float = 0.9
    fdr_threshold: float = 0.05
    correction_method: str = 'fdr_bh'

    # Representation tests
    taxonomy_rank: str = 'Phylum'

    # Random Forest
    n_estimators: int = 501
    max_features: Optional[str] = 'sqrt'
    test_size: float = 0.2
    cross_validation_folds: int = 5
    n_model_permutations: int = 100
    max_classes_for_classification: int = 10

    random_state: int = 42

    # Output parameters
    output_formats: List[str] = field(default_factory=lambda: ["text", "json"])
    include_matrices: bool = True
    generate_plots: bool = True

    def validate(self) -> 'TaxaNetworkConfig':
        """Check value ranges; returns self so calls can be chained."""
        if not 0 <= self.prevalence_threshold <= 100:
            raise ConfigurationError("prevalence_threshold must be between 0 and 100.")
        if self.normalization not in NORMALIZATION_METHODS:
            raise ConfigurationError(
                f"Unknown normalization '{self.normalization}'. Choose from {NORMALIZATION_METHODS}."
            )
        for rank_name, rank in (('taxonomy_rank', self.taxonomy_rank), ('collapse_rank', self.collapse_rank)):
            if rank is not None and rank not in TAXONOMY_RANKS:
                raise ConfigurationError(f"Unknown {rank_name} '{rank}'. Choose from {TAXONOMY_RANKS}.")
        if not self.association_methods:
            raise ConfigurationError("At least one association method is required.")
        try:
            self.association_methods = [AssociationMethod.parse(m).value for m in self.association_methods]
        except UnsupportedMethod as e:
            raise ConfigurationError(str(e)) from e
        if self.n_permutations < 1:
            raise ConfigurationError("n_permutations must be at least 1.")
        if not 0 < self.fdr_threshold <= 1:
            raise ConfigurationError("fdr_threshold must be in (0, 1].")
        if not 0 <= self.correlation_threshold <= 1:
            raise ConfigurationError("correlation_threshold must be in [0, 1].")
        if not 0 <= self.dissimilarity_quantile <= 1:
            raise ConfigurationError("dissimilarity_quantile must be in [0, 1].")
        if not 0 < self.test_size < 1:
            raise ConfigurationError("test_size must be in (0, 1).")
        if self.cross_validation_folds < 2:
            raise ConfigurationError("cross_validation_folds must be at least 2.")
        return self

    def check_network_methods(self) -> 'TaxaNetworkConfig':
        """Reject dissimilarity methods on tables that may hold negative values."""
        if self.normalization == 'clr':
            dissimilarities = [m for m in self.association_methods if AssociationMethod.parse(m).is_dissimilarity]
            if dissimilarities:
                raise ConfigurationError(
                    f"{dissimilarities} need non-negative abundances; use 'relative' normalization "
                    f"or correlation methods with 'clr'."
                )
        return self
