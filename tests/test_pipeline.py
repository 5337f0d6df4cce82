import pandas as pd
import pytest
from core.config import AnalysisConfig
from core.errors import CountMatrixError, DesignError
from core.pipeline import ReportPipeline, default_contrasts
from utils.export import ReportExporter
from utils.gene_mapping import GeneAnnotator
from utils.pathways import GeneSetDatabase


@pytest.fixture(scope='module')
def annotation_path(simulated, tmp_path_factory):
    counts, _ = simulated
    path = tmp_path_factory.mktemp('annotation') / 'genes.tsv'
    table = pd.DataFrame(
        {'symbol': [f'SYM{i}' for i in range(len(counts))], 'xref': range(len(counts))},
        index=pd.Index(counts.index, name='GeneID')
    )
    table.loc['SHIFT', 'symbol'] = 'SHIFTY'
    table.to_csv(path, sep='\t')
    return path


@pytest.fixture(scope='module')
def gene_set_db(tmp_path_factory):
    db = GeneSetDatabase(cache_dir=str(tmp_path_factory.mktemp('sets')))
    db.add_custom_set('shift_and_friends', ['SHIFTY', 'NULL'] + [f'GENE{i:04d}' for i in range(10)])
    db.add_custom_set('too_small', ['SHIFT'])
    return db


@pytest.fixture(scope='module')
def context(simulated, annotation_path, gene_set_db):
    counts, samples = simulated
    config = AnalysisConfig.from_dict({
        'annotation_path': str(annotation_path),
        'fit': {'strategies': ['ql_glm', 'voom_quality']},
        'gene_sets': {'nrot': 199, 'min_size': 3},
    })
    pipeline = ReportPipeline(config, gene_set_db=gene_set_db)
    return pipeline, pipeline.run(counts=counts, samples=samples)


def test_default_contrasts():
    assert default_contrasts(['ctrl', 'high', 'low']) == {
        'high_vs_ctrl': 'high - ctrl',
        'low_vs_ctrl': 'low - ctrl',
    }


def test_pipeline_stages(context):
    _, ctx = context
    assert ctx.normalized.n_genes <= ctx.raw.n_genes
    assert ctx.normalized.genes.loc['SHIFT', 'symbol'] == 'SHIFTY'
    assert [c.name for c in ctx.contrasts] == ['B_vs_A']
    assert ctx.dispersions is not None
    assert list(ctx.fits) == ['ql_glm', 'voom_quality']
    assert list(ctx.tables['B_vs_A']) == ['ql_glm', 'voom_quality']


def test_pipeline_ranks_shift_gene_first(context):
    _, ctx = context
    for table in ctx.tables['B_vs_A'].values():
        assert 'SHIFT' in table['Gene'].head(5).tolist()
        assert table.set_index('Gene').loc['SHIFT', 'symbol'] == 'SHIFTY'


def test_pipeline_gene_sets(context):
    pipeline, ctx = context
    assert list(ctx.gene_set_index) == ['shift_and_friends']
    results = ctx.gene_set_results['B_vs_A']
    assert list(results['rotation'].index) == ['shift_and_friends']
    kept = ['SHIFT', 'NULL'] + [f'GENE{i:04d}' for i in range(10)]
    n_kept = sum(gene in ctx.normalized.counts.index for gene in kept)
    assert results['rotation'].loc['shift_and_friends', 'NGenes'] == n_kept
    assert list(results['competitive'].columns) == ['NGenes', 'Direction', 'PValue', 'FDR']
    assert results['competitive'].loc['shift_and_friends', 'NGenes'] == n_kept
    assert pipeline.primary_strategy(ctx) == 'ql_glm'


def test_pipeline_decisions(context):
    pipeline, ctx = context
    decisions = pipeline.decisions(ctx)
    assert list(decisions.index) == ['B_vs_A/ql_glm', 'B_vs_A/voom_quality']
    assert (decisions['Up'] >= 1).all()
    assert (decisions.sum(axis=1) == ctx.normalized.n_genes).all()


def test_pipeline_figures(context):
    _, ctx = context
    expected = {
        'logcpm_raw', 'logcpm_normalized', 'mds', 'bcv', 'ql_dispersion',
        'voom_quality_trend', 'sample_weights',
        'B_vs_A/ql_glm/volcano', 'B_vs_A/voom_quality/md', 'B_vs_A/heatmap',
        'B_vs_A/ql_glm_vs_voom_quality', 'B_vs_A/gene_sets',
    }
    assert expected <= set(ctx.figures)


def test_pipeline_export(context, tmp_path):
    pipeline, ctx = context
    written = pipeline.export(ctx, ReportExporter(output_dir=str(tmp_path)))
    names = {p.name for p in written}

    assert {
        'B_vs_A_ql_glm.csv', 'B_vs_A_voom_quality.csv', 'top_tables.xlsx', 'summary.csv',
        'decisions.csv', 'dispersions.csv', 'B_vs_A_gene_sets_rotation.csv', 'mds.html',
    } <= names
    assert all(p.exists() for p in written)

    summary = pd.read_csv(tmp_path / 'summary.csv')
    assert summary['Result'].tolist() == ['B_vs_A/ql_glm', 'B_vs_A/voom_quality']


def test_pipeline_from_files(simulated, tmp_path):
    counts, samples = simulated
    counts.to_csv(tmp_path / 'counts.tsv', sep='\t')
    samples.to_csv(tmp_path / 'samples.tsv', sep='\t')

    config = AnalysisConfig(
        counts_path=str(tmp_path / 'counts.tsv'),
        sample_sheet_path=str(tmp_path / 'samples.tsv'),
    )
    config.fit.strategies = ('voom',)
    ctx = ReportPipeline(config).run(figures=False)

    assert ctx.dispersions is None
    assert 'SHIFT' in ctx.tables['B_vs_A']['voom']['Gene'].head(5).tolist()
    assert ctx.figures == {}


def test_pipeline_without_genes_left(simulated):
    counts, samples = simulated
    config = AnalysisConfig.from_dict({'filtering': {'min_count': 1e9, 'min_total_count': 1e9}})
    pipeline = ReportPipeline(config)
    ctx = pipeline.load(pipeline.new_context(), counts=counts, samples=samples)
    pipeline.annotate(ctx)
    with pytest.raises(DesignError, match="No genes left"):
        pipeline.filter(ctx)


def test_annotator_is_created_from_config(simulated, annotation_path):
    counts, samples = simulated
    pipeline = ReportPipeline(AnalysisConfig(annotation_path=str(annotation_path)))
    ctx = pipeline.load(pipeline.new_context(), counts=counts, samples=samples)
    pipeline.annotate(ctx)

    assert isinstance(pipeline.annotator, GeneAnnotator)
    assert ctx.annotated.genes.loc['SHIFT', 'symbol'] == 'SHIFTY'


def test_missing_covariate_is_an_error(simulated):
    counts, samples = simulated
    pipeline = ReportPipeline(AnalysisConfig(covariates=['condition']))
    with pytest.raises(CountMatrixError, match="condition"):
        pipeline.load(pipeline.new_context(), counts=counts, samples=samples)


def test_covariates_need_a_sample_sheet(simulated):
    counts, _ = simulated
    pipeline = ReportPipeline(AnalysisConfig(covariates=['genotype', 'time']))
    with pytest.raises(CountMatrixError, match="sample sheet"):
        pipeline.load(pipeline.new_context(), counts=counts)


def test_gene_sets_estimate_dispersions_when_needed(simulated, gene_set_db):
    counts, samples = simulated
    config = AnalysisConfig.from_dict({
        'fit': {'strategies': ['voom']},
        'gene_sets': {'nrot': 99},
    })
    ctx = ReportPipeline(config, gene_set_db=gene_set_db).run(
        counts=counts, samples=samples, figures=False
    )
    assert ctx.dispersions is not None
    assert set(ctx.gene_set_results['B_vs_A']) == {'rotation', 'competitive'}
