# taxa_network/__init__.py
"""
TaxaNetwork: co-occurrence networks and Random Forest models for microbial communities.

Builds taxon association networks from abundance tables using correlation
(Spearman, Pearson) and dissimilarity (Bray-Curtis, symmetric KL divergence)
measures, validates every pair by permutation with false discovery rate
control, and tests whether taxonomic groups are over- or under-represented
among network nodes and edges. A Random Forest workflow models metadata
groups from the same tables.
"""
__version__ = "0.1.0"

from .config import TaxaNetworkConfig
from .dissimilarity import (
    AssociationMethod,
    compute_divergence,
    compute_divergence_matrix,
    estimate_pair_pvalue,
    pair_statistic,
)
from .exceptions import (
    ConfigurationError,
    DataFormatError,
    DimensionMismatch,
    TaxaNetworkError,
    UnsupportedMethod,
)
from .taxa_network import TaxaNetwork, run_classification_analysis, run_taxa_network_analysis
