import pytest
from core.config import AnalysisConfig, FitConfig, NormalizationConfig
from core.config import TestingConfig as ThresholdConfig


def test_defaults():
    config = AnalysisConfig()
    assert config.covariates == ['group']
    assert config.normalization.method == 'TMM'
    assert config.fit.strategies == ('ql_glm', 'voom', 'voom_quality')
    assert config.gene_sets.nrot == 1999
    assert str(config.output_path) == 'report'


def test_from_dict_builds_sections():
    config = AnalysisConfig.from_dict({
        'covariates': ['condition', 'time'],
        'contrasts': {'late': 'treated_24h - ctrl_24h'},
        'fit': {'strategies': ['voom', 'deseq2'], 'robust': False},
        'testing': {'p_value': 0.1, 'lfc': 0.5},
        'gene_sets': {'nrot': 99},
    })
    assert isinstance(config.fit, FitConfig)
    assert config.fit.strategies == ('voom', 'deseq2')
    assert config.fit.robust is False
    assert isinstance(config.testing, ThresholdConfig)
    assert config.testing.lfc == 0.5
    assert config.gene_sets.nrot == 99
    assert config.gene_sets.min_size == 3


def test_from_dict_rejects_unknown_key():
    with pytest.raises(ValueError, match="Unknown configuration key"):
        AnalysisConfig.from_dict({'pvalue': 0.05})


@pytest.mark.parametrize('kwargs, message', [
    ({'normalization': NormalizationConfig(method='rle')}, 'normalization method'),
    ({'fit': FitConfig(strategies=('ql_glm', 'edger_exact'))}, 'strategies'),
    ({'covariates': []}, 'covariate'),
    ({'testing': ThresholdConfig(lfc=-1.0)}, 'non-negative'),
])
def test_validation(kwargs, message):
    with pytest.raises(ValueError, match=message):
        AnalysisConfig(**kwargs)


def test_invalid_dispersion_choice():
    with pytest.raises(ValueError, match="dispersion choice"):
        AnalysisConfig.from_dict({'dispersion': {'use': 'shrunk'}})


def test_invalid_dispersion_trend():
    with pytest.raises(ValueError, match="dispersion trend"):
        AnalysisConfig.from_dict({'dispersion': {'trend_method': 'parametric'}})


def test_dispersion_defaults():
    config = AnalysisConfig.from_dict({'dispersion': {'use': 'tagwise', 'robust': True}})
    assert config.dispersion.use == 'tagwise'
    assert config.dispersion.trend_method == 'locfit'
    assert AnalysisConfig().dispersion.use == 'auto'
