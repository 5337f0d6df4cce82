import numpy as np
import pandas as pd
import pytest

from core.data_loader import build_count_matrix
from core.design import design_matrix, parse_contrast
from core.preprocessing import DataPreprocessor


def simulate_counts(n_genes=300, n_per_group=6, dispersion=0.05, fold=8.0, seed=7):
    """
    Negative binomial counts for two groups of ``n_per_group`` samples.

    Background genes share the same mean in both groups. ``SHIFT`` is
    ``fold`` times higher in group B and ``NULL`` has the same counts
    in both groups.
    """
    rng = np.random.default_rng(seed)
    samples = [f'A_{i + 1}' for i in range(n_per_group)] + [f'B_{i + 1}' for i in range(n_per_group)]
    n_samples = len(samples)

    means = rng.lognormal(mean=5.0, sigma=1.0, size=n_genes)
    lam = rng.gamma(shape=1 / dispersion, scale=means[:, None] * dispersion, size=(n_genes, n_samples))
    background = rng.poisson(lam)

    shift_mean = np.array([200.0] * n_per_group + [200.0 * fold] * n_per_group)
    shift_lam = rng.gamma(shape=1 / dispersion, scale=shift_mean * dispersion)
    shift = rng.poisson(shift_lam)

    null = np.tile([400, 600, 500, 450, 550, 500], 2)[:n_samples]

    genes = [f'GENE{i:04d}' for i in range(n_genes)] + ['SHIFT', 'NULL']
    counts = pd.DataFrame(
        np.vstack([background, shift, null]).astype(np.int64),
        index=pd.Index(genes, name='GeneID'),
        columns=samples
    )
    metadata = pd.DataFrame(
        {'group': ['A'] * n_per_group + ['B'] * n_per_group},
        index=pd.Index(samples, name='sample')
    )
    return counts, metadata


@pytest.fixture(scope='session')
def simulated():
    return simulate_counts()


@pytest.fixture(scope='session')
def count_matrix(simulated):
    counts, metadata = simulated
    return build_count_matrix(counts, metadata)


@pytest.fixture(scope='session')
def normalized(count_matrix):
    preprocessor = DataPreprocessor()
    return preprocessor.normalize(preprocessor.filter(count_matrix))


@pytest.fixture(scope='session')
def design(normalized):
    return design_matrix(normalized.samples)


@pytest.fixture(scope='session')
def contrast(design):
    return parse_contrast('B - A', design.columns, name='B_vs_A')


@pytest.fixture
def small_counts():
    return pd.DataFrame(
        {
            'S1': [10, 0, 5, 100],
            'S2': [12, 0, 3, 90],
            'S3': [30, 1, 4, 110],
            'S4': [28, 0, 6, 95],
        },
        index=pd.Index(['G1', 'G2', 'G3', 'G4'], name='GeneID')
    )


@pytest.fixture
def small_metadata():
    return pd.DataFrame(
        {'condition': ['ctrl', 'ctrl', 'treated', 'treated'], 'batch': ['b1', 'b2', 'b1', 'b2']},
        index=pd.Index(['S1', 'S2', 'S3', 'S4'], name='sample')
    )
