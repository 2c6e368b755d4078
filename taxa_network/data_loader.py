# taxa_network/data_loader.py
import logging
import re
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from .config import TAXONOMY_RANKS
from .exceptions import ConfigurationError, DataFormatError

logger = logging.getLogger(__name__)

UNASSIGNED = 'Unassigned'
_RANK_PREFIX = re.compile(r'^[a-zA-Z]__')


def _read_table(path: Path) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix not in {'.csv', '.tsv', '.txt'}:
        raise DataFormatError(f"Unsupported format: {path.suffix}")
    sep = ',' if suffix == '.csv' else '\t'
    return pd.read_csv(path, sep=sep, index_col=0)


def _drop_duplicates(df: pd.DataFrame, what: str) -> pd.DataFrame:
    duplicates = df.index.duplicated(keep=False)
    if duplicates.any():
        logger.warning(f"Found {duplicates.sum()} duplicate {what} IDs. Keeping first occurrence.")
        df = df[~df.index.duplicated(keep='first')]
    return df


class DataLoader:
    """Handles loading and alignment of abundance tables, metadata and taxonomy."""

    def load_abundance_table(self, file_path: str, output_dir: Optional[str] = None) -> pd.DataFrame:
        """
        Load a feature abundance table (features as rows, samples as columns).

        Raises:
            DataFormatError: On unsupported suffixes, non-numeric or negative counts.
        """
        path = Path(file_path)
        logger.info(f"Loading abundance table from: {path}")
        df = _read_table(path)

        # BIOM-derived TSVs carry a taxonomy column next to the counts
        non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
        if non_numeric:
            logger.warning(f"Dropping non-numeric columns from abundance table: {non_numeric}")
            df = df.drop(columns=non_numeric)
        if df.empty:
            raise DataFormatError(f"No numeric abundance data found in {path}")
        if (df.values < 0).any():
            raise DataFormatError("Counts must be non-negative.")

        df = _drop_duplicates(df, 'feature')
        df = df.fillna(0)

        if output_dir:
            output_path = Path(output_dir) / "deduplicated_abundance_table.csv"
            output_path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(output_path)
            logger.info(f"Saved deduplicated abundance table to: {output_path}")

        logger.info(f"Loaded {df.shape[0]} features across {df.shape[1]} samples")
        return df

    def load_metadata(self, file_path: str, output_dir: Optional[str] = None) -> pd.DataFrame:
        """
        Load metadata from CSV/TSV and deduplicate samples.
        """
        path = Path(file_path)
        logger.info(f"Loading metadata from: {path}")
        df = _drop_duplicates(_read_table(path), 'sample')

        if output_dir:
            output_path = Path(output_dir) / "deduplicated_metadata.csv"
            output_path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(output_path)
            logger.info(f"Saved deduplicated metadata to: {output_path}")

        return df

    def load_taxonomy(self, file_path: str) -> pd.DataFrame:
        """
        Load feature lineages and split them into one column per rank.

        Accepts QIIME2 ``taxonomy.tsv`` files (a ``Taxon`` column) or any
        two-column table whose first data column holds the lineage.
        """
        path = Path(file_path)
        logger.info(f"Loading taxonomy from: {path}")
        df = _drop_duplicates(_read_table(path), 'feature')
        if df.shape[1] == 0:
            raise DataFormatError(f"Taxonomy file has no lineage column: {path}")
        lineage = df['Taxon'] if 'Taxon' in df.columns else df.iloc[:, 0]
        return split_taxonomy(lineage)

    def align_data(self, table: pd.DataFrame, metadata: pd.DataFrame, label_column: str,
                   output_dir: Optional[str] = None) -> Tuple[pd.DataFrame, pd.Series]:
        """
        Align an abundance table with metadata and extract labels.

        Args:
            table (pd.DataFrame): Features x samples abundance table.
            metadata (pd.DataFrame): Samples x variables metadata.
            label_column (str): Metadata column holding the labels.
            output_dir (Optional[str]): Directory to save aligned data (default: None).

        Returns:
            Tuple[pd.DataFrame, pd.Series]: Samples x features data and the
            labels of the same samples.

        Raises:
            DataFormatError: If there are no common samples or the label
                column is missing.
        """
        logger.info("Aligning abundance table and metadata...")
        if label_column not in metadata.columns:
            raise DataFormatError(f"Label column '{label_column}' not found in metadata.")

        samples = table.T
        common_samples = samples.index.intersection(metadata.index)
        if common_samples.empty:
            raise DataFormatError("No common samples between abundance table and metadata.")

        samples = samples.loc[common_samples]
        labels = metadata.loc[common_samples, label_column]

        # Filter out samples with missing labels
        non_na_mask = ~labels.isna()
        samples = samples.loc[non_na_mask]
        labels = labels[non_na_mask]

        if output_dir:
            output_path = Path(output_dir)
            output_path.mkdir(parents=True, exist_ok=True)
            samples.to_csv(output_path / "aligned_abundance_table.csv")
            labels.to_csv(output_path / "aligned_labels.csv")
            logger.info(f"Saved aligned data to: {output_path}")

        logger.info(f"Aligned data: {len(labels)} samples, {samples.shape[1]} features retained.")
        return samples, labels


def split_taxonomy(lineage: pd.Series) -> pd.DataFrame:
    """
    Expand ';'-separated lineage strings into rank columns.

    Rank prefixes such as ``d__`` or ``g__`` are removed and missing or empty
    ranks are filled with 'Unassigned'.
    """
    rows = {}
    for feature, value in lineage.items():
        parts = [] if pd.isna(value) else [p.strip() for p in str(value).split(';')]
        names = [_RANK_PREFIX.sub('', p).strip() for p in parts]
        names = [n if n else UNASSIGNED for n in names][:len(TAXONOMY_RANKS)]
        names += [UNASSIGNED] * (len(TAXONOMY_RANKS) - len(names))
        rows[feature] = names
    return pd.DataFrame.from_dict(rows, orient='index', columns=list(TAXONOMY_RANKS))


def prevalence_filtering(feature_table_df: pd.DataFrame, prevalence_threshold: float) -> pd.DataFrame:
    """
    Remove features from feature table with prevalence below threshold.

    Args:
        feature_table_df (pd.DataFrame): Features as rows, samples as columns.
        prevalence_threshold (float): Minimum prevalence percentage (0-100).
            Features must be present (>0) in at least this percentage of samples.

    Returns:
        pd.DataFrame: Filtered table containing only features meeting the
            prevalence threshold.
    """
    if feature_table_df.shape[1] == 0:
        return feature_table_df
    feature_prevalence = (feature_table_df > 0).sum(axis=1) / feature_table_df.shape[1] * 100
    filtered_df = feature_table_df.loc[feature_prevalence >= prevalence_threshold, :]
    logger.info(
        f"Prevalence filtering at {prevalence_threshold}%: "
        f"{feature_table_df.shape[0]} -> {filtered_df.shape[0]} features"
    )
    return filtered_df


def relative_abundance(table: pd.DataFrame) -> pd.DataFrame:
    """Scale each sample (column) to proportions; all-zero samples are dropped."""
    totals = table.sum(axis=0)
    empty = totals == 0
    if empty.any():
        logger.warning(f"Dropping {int(empty.sum())} samples with zero total counts.")
    table = table.loc[:, ~empty]
    return table.div(totals[~empty], axis=1)


def clr_transform(table: pd.DataFrame, pseudocount: float = 1.0) -> pd.DataFrame:
    """
    Centred log-ratio transform per sample (column).

    clr[i, j] = log(x[i, j] + pseudocount) - mean_i(log(x[i, j] + pseudocount))
    """
    logged = np.log(table.astype(float) + pseudocount)
    return logged - logged.mean(axis=0)


def presence_absence_transform(table: pd.DataFrame) -> pd.DataFrame:
    """Convert counts to binary presence (1) or absence (0)."""
    return (table > 0).astype(int)


def normalize_table(table: pd.DataFrame, method: str) -> pd.DataFrame:
    """Apply the named normalization to a features x samples table."""
    if method == 'relative':
        return relative_abundance(table)
    if method == 'clr':
        return clr_transform(table)
    if method == 'presence_absence':
        return presence_absence_transform(table)
    if method == 'none':
        return table
    raise ConfigurationError(
        f"Unsupported normalization method: {method}. "
        "Choose 'relative', 'clr', 'presence_absence' or 'none'."
    )


def collapse_to_rank(table: pd.DataFrame, taxonomy: pd.DataFrame,
                     rank: str) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Sum feature rows that share a taxon name at ``rank``.

    Features absent from ``taxonomy`` are pooled under 'Unassigned'.

    Returns:
        The collapsed table (taxa x samples) and the taxonomy of each
        collapsed taxon down to ``rank``.
    """
    if rank not in TAXONOMY_RANKS:
        raise ConfigurationError(f"Unknown taxonomy rank: {rank}")
    ranks = list(TAXONOMY_RANKS[:TAXONOMY_RANKS.index(rank) + 1])
    lineage = taxonomy.reindex(table.index)[ranks].fillna(UNASSIGNED)
    collapsed = table.groupby(lineage[rank]).sum()
    collapsed_taxonomy = lineage.drop_duplicates(subset=rank).set_index(rank, drop=False)
    collapsed_taxonomy = collapsed_taxonomy.loc[collapsed.index]
    collapsed_taxonomy.index.name = None
    collapsed.index.name = None
    logger.info(f"Collapsed {table.shape[0]} features into {collapsed.shape[0]} taxa at {rank} level")
    return collapsed, collapsed_taxonomy
