"""
Shared fixtures: a small synthetic community with known structure.

OTU1 and OTU2 follow the same driver (positive association), OTU3 is
depleted when the driver is high (negative association), OTU4-OTU8 are
independent and OTU9 is too rare to pass a 20% prevalence filter.
"""

import numpy as np
import pandas as pd
import pytest

from taxa_network.config import TaxaNetworkConfig

N_SAMPLES = 30


@pytest.fixture
def samples():
    return [f"S{i + 1}" for i in range(N_SAMPLES)]


@pytest.fixture
def driver():
    rng = np.random.default_rng(0)
    return rng.integers(10, 200, size=N_SAMPLES)


@pytest.fixture
def abundance_table(samples, driver):
    """Taxa x samples count table."""
    rng = np.random.default_rng(1)
    rows = {
        'OTU1': driver + rng.poisson(5, N_SAMPLES),
        'OTU2': 2 * driver + rng.poisson(10, N_SAMPLES),
        'OTU3': rng.poisson(np.clip(250 - driver, 1, None)),
    }
    for k in range(4, 9):
        rows[f'OTU{k}'] = rng.poisson(30, N_SAMPLES)
    rare = np.zeros(N_SAMPLES, dtype=int)
    rare[:2] = 3
    rows['OTU9'] = rare
    return pd.DataFrame.from_dict(rows, orient='index', columns=samples)


@pytest.fixture
def taxonomy_lineages():
    return pd.Series({
        'OTU1': 'd__Bacteria; p__Firmicutes; c__Bacilli; o__Lactobacillales',
        'OTU2': 'd__Bacteria; p__Firmicutes; c__Clostridia',
        'OTU3': 'd__Bacteria; p__Bacteroidota; c__Bacteroidia',
        'OTU4': 'd__Bacteria; p__Bacteroidota',
        'OTU5': 'd__Bacteria; p__Proteobacteria; c__Gammaproteobacteria',
        'OTU6': 'd__Bacteria; p__Proteobacteria',
        'OTU7': 'd__Bacteria; p__Firmicutes',
        'OTU8': 'd__Bacteria',
        'OTU9': 'd__Bacteria; p__Actinobacteriota',
    }, name='Taxon')


@pytest.fixture
def metadata(samples, driver):
    """Samples x variables; 'group' follows the driver, 'age' is continuous."""
    rng = np.random.default_rng(2)
    order = np.argsort(driver)
    group = np.empty(N_SAMPLES, dtype=object)
    group[order[:N_SAMPLES // 2]] = 'healthy'
    group[order[N_SAMPLES // 2:]] = 'disease'
    return pd.DataFrame({
        'group': group,
        'age': np.round(rng.uniform(20, 80, N_SAMPLES), 1),
    }, index=samples)


@pytest.fixture
def table_file(tmp_path, abundance_table):
    path = tmp_path / "feature_table.tsv"
    abundance_table.to_csv(path, sep='\t', index_label='#OTU ID')
    return path


@pytest.fixture
def taxonomy_file(tmp_path, taxonomy_lineages):
    path = tmp_path / "taxonomy.tsv"
    taxonomy_lineages.to_frame().to_csv(path, sep='\t', index_label='Feature ID')
    return path


@pytest.fixture
def metadata_file(tmp_path, metadata):
    path = tmp_path / "metadata.csv"
    metadata.to_csv(path, index_label='sample_id')
    return path


@pytest.fixture
def fast_config():
    """Small permutation and forest sizes so tests run quickly."""
    return TaxaNetworkConfig(
        association_methods=['spearman'],
        n_permutations=99,
        n_estimators=25,
        n_model_permutations=5,
        cross_validation_folds=3,
        generate_plots=False,
    )
