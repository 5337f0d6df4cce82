import numpy as np
import pandas as pd
import pytest
from core.analysis import TOP_TABLE_COLUMNS
from core.data_loader import build_count_matrix
from core.design import design_matrix, parse_contrast
from core.dispersion import estimate_dispersions
from core.errors import ContrastError
from core.fitters import FITTERS, VoomFitter, get_fitter, moderated_t
from core.preprocessing import DataPreprocessor
from scipy import stats

STRATEGIES = ['ql_glm', 'voom', 'voom_quality', 'deseq2']


@pytest.fixture(scope='module')
def dispersions(normalized, design):
    return estimate_dispersions(normalized, design)


@pytest.fixture(scope='module')
def fits(normalized, design, dispersions):
    return {
        name: get_fitter(name).fit(normalized, design, dispersions=dispersions)
        for name in STRATEGIES
    }


@pytest.fixture(scope='module')
def tables(fits, contrast):
    return {name: get_fitter(name).test(fit, contrast) for name, fit in fits.items()}


def rank_of(table, gene):
    return int(np.flatnonzero(table['Gene'].values == gene)[0])


def test_dispersion_estimates(dispersions, normalized):
    table = dispersions.table
    assert list(table.columns) == ['tagwise', 'trended', 'AveLogCPM']
    assert table.index.equals(normalized.counts.index)
    assert np.isfinite(table[['tagwise', 'trended']].values).all()
    assert (table[['tagwise', 'trended']].values > 0).all()
    # Simulated with dispersion 0.05, i.e. a BCV of about 0.22
    assert 0.1 < dispersions.bcv < 0.45
    assert dispersions.select('common').nunique() == 1
    assert dispersions.select('auto') is None
    assert dispersions.dge is not None
    with pytest.raises(ValueError):
        dispersions.select('genewise')


def test_registry():
    assert set(FITTERS) == set(STRATEGIES)
    assert isinstance(get_fitter('voom'), VoomFitter)
    with pytest.raises(ValueError, match="Unknown strategy"):
        get_fitter('edger_exact')


@pytest.mark.parametrize('strategy', STRATEGIES)
def test_top_table_layout(tables, normalized, strategy):
    table = tables[strategy]
    assert list(table.columns) == TOP_TABLE_COLUMNS
    assert len(table) == normalized.n_genes
    assert table['pvalue'].dropna().is_monotonic_increasing


@pytest.mark.parametrize('strategy', STRATEGIES)
def test_shift_gene_is_top_ranked(tables, strategy):
    table = tables[strategy]
    assert rank_of(table, 'SHIFT') < 5

    shift = table.set_index('Gene').loc['SHIFT']
    assert 2.0 < shift['log2FC'] < 4.0
    assert shift['padj'] < 0.01
    assert np.sign(shift['stat']) == 1


@pytest.mark.parametrize('strategy', STRATEGIES)
def test_null_gene_is_not_top_ranked(tables, strategy):
    table = tables[strategy]
    assert rank_of(table, 'NULL') >= 5

    null = table.set_index('Gene').loc['NULL']
    assert abs(null['log2FC']) < 0.5
    assert null['padj'] > 0.05


@pytest.mark.parametrize('strategy', STRATEGIES)
def test_sign_reversal_flips_log2fc(fits, tables, contrast, strategy):
    reversed_table = get_fitter(strategy).test(fits[strategy], contrast.negate())

    forward = tables[strategy].set_index('Gene')
    backward = reversed_table.set_index('Gene').reindex(forward.index)

    np.testing.assert_allclose(backward['log2FC'], -forward['log2FC'], rtol=1e-6, atol=1e-8)
    np.testing.assert_allclose(backward['pvalue'], forward['pvalue'], rtol=1e-6)


@pytest.mark.parametrize('strategy', ['voom', 'voom_quality'])
def test_treat_pvalues_not_smaller(fits, tables, contrast, strategy):
    treat = get_fitter(strategy).test(fits[strategy], contrast, lfc=1.0).set_index('Gene')
    plain = tables[strategy].set_index('Gene').reindex(treat.index)

    valid = plain['pvalue'].notna()
    assert np.all(treat.loc[valid, 'pvalue'] >= plain.loc[valid, 'pvalue'] - 1e-12)
    assert treat.loc['SHIFT', 'pvalue'] < 0.01


def test_ql_fit_moderates_dispersions(fits):
    fit = fits['ql_glm']
    assert np.all(np.atleast_1d(fit.df_prior) > 0)
    assert np.isfinite(fit.s2_post).mean() > 0.95
    assert 'dispersions' in fit.diagnostics
    assert np.all(fit.df_total <= np.sum(fit.df_residual))


def test_voom_weights(fits, normalized):
    v = fits['voom'].diagnostics['voom']
    assert v.weights.shape == (normalized.n_genes, normalized.n_samples)
    assert (v.weights > 0).all()
    assert (v.sample_weights == 1.0).all()


def test_quality_weights_geometric_mean_one(fits):
    weights = fits['voom_quality'].diagnostics['voom'].sample_weights
    assert np.exp(np.mean(np.log(weights))) == pytest.approx(1.0)
    assert (weights > 0).all()


def test_deseq2_rejects_non_pairwise_contrast(fits, design):
    with pytest.raises(ContrastError, match="pairwise"):
        get_fitter('deseq2').test(fits['deseq2'], parse_contrast('B', design.columns))


def test_strategies_agree_on_direction(tables):
    merged = pd.concat(
        {name: table.set_index('Gene')['log2FC'] for name, table in tables.items()},
        axis=1
    )
    assert merged.corr().min().min() > 0.8


def test_ql_treat_is_more_conservative(fits, tables, contrast):
    treat = get_fitter('ql_glm').test(fits['ql_glm'], contrast, lfc=1.0).set_index('Gene')
    plain = tables['ql_glm'].set_index('Gene').reindex(treat.index)

    assert treat.loc['SHIFT', 'pvalue'] < 0.01
    assert np.mean(treat['pvalue'] >= plain['pvalue'] - 1e-8) > 0.95


def test_ql_fit_uses_adjusted_residual_df(fits, normalized, design):
    fit = fits['ql_glm']
    assert fit.coefficients.shape == (normalized.n_genes, design.shape[1])
    assert np.all(fit.df_residual <= design.shape[0] - design.shape[1] + 1e-8)
    assert 'glm' in fit.diagnostics


def test_moderated_t_matches_ordinary_t_without_prior():
    coef = np.array([1.0, -2.0])
    se_unscaled = np.array([0.5, 0.5])
    t, p = moderated_t(coef, se_unscaled, np.array([1.0, 1.0]), np.array([6.0, 6.0]))
    np.testing.assert_allclose(t, [2.0, -4.0])
    np.testing.assert_allclose(p, 2 * stats.t.sf([2.0, 4.0], 6))


def test_moderated_t_treat_pvalues_are_larger():
    coef = np.array([0.8, 1.5, -3.0])
    args = (np.full(3, 0.2), np.full(3, 0.5), np.full(3, 10.0))
    _, p0 = moderated_t(coef, *args)
    t1, p1 = moderated_t(coef, *args, lfc=1.0)
    assert np.all(p1 >= p0)
    assert t1[0] == 0.0
    assert np.sign(t1[2]) == -1


@pytest.fixture(scope='module')
def dose_data(simulated):
    counts, _ = simulated
    samples = pd.DataFrame(
        {
            'group': ['dose_low'] * 6 + ['dose_high'] * 6,
            'dose': ['x', 'y'] * 6,
        },
        index=pd.Index(counts.columns, name='sample')
    )
    preprocessor = DataPreprocessor()
    cm = preprocessor.normalize(preprocessor.filter(build_count_matrix(counts, samples)))
    design = design_matrix(cm.samples)
    return cm, design, parse_contrast('dose_high - dose_low', design.columns, name='high_vs_low')


def test_deseq2_ignores_columns_named_like_groups(dose_data):
    cm, design, contrast = dose_data
    fitter = get_fitter('deseq2')
    fit = fitter.fit(cm, design)

    assert fit.diagnostics['formula'] == '~condition'
    assert 'dose' not in fit.diagnostics['dds'].obs.columns
    table = fitter.test(fit, contrast)
    assert rank_of(table, 'SHIFT') < 5


def test_deseq2_uses_explicit_block(dose_data):
    cm, design, contrast = dose_data
    fit = get_fitter('deseq2', block=['dose']).fit(cm, design)
    assert fit.diagnostics['formula'] == '~dose + condition'
    assert np.isfinite(fit.s2).mean() > 0.95
