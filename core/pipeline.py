"""
Report pipeline: load, annotate, filter, normalize, estimate dispersions,
fit strategies, test contrasts and gene sets, then build figures and tables.

Every stage reads from and writes to an explicit ``AnalysisContext``.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from .analysis import StrategyComparison, decide_tests, summarize_decisions
from .config import AnalysisConfig
from .count_matrix import CountMatrix
from .data_loader import DataLoader, build_count_matrix
from .design import Contrast, check_design, design_matrix, make_contrasts
from .dispersion import DispersionEstimates, estimate_dispersions
from .errors import CountMatrixError, DesignError
from .fitters import FitResult, get_fitter
from .gene_sets import camera, mroast
from .preprocessing import DataPreprocessor, cpm

logger = logging.getLogger(__name__)


@dataclass
class AnalysisContext:
    """
    State handed from stage to stage.

    Attributes:
        config: Analysis configuration
        raw: Count matrix as loaded
        annotated: Count matrix with gene annotation
        filtered: Count matrix after expression and annotation filtering
        normalized: Filtered matrix with normalization factors
        design: Design matrix
        contrasts: Parsed contrasts
        dispersions: NB dispersion estimates
        fits: Strategy name to FitResult
        tables: Contrast name to {strategy name: TopTable}
        gene_set_index: Gene set name to row positions in ``normalized``
        gene_set_results: Contrast name to {test name: GeneSetResult table}
        figures: Figure name to Plotly figure
    """

    config: AnalysisConfig
    raw: Optional[CountMatrix] = None
    annotated: Optional[CountMatrix] = None
    filtered: Optional[CountMatrix] = None
    normalized: Optional[CountMatrix] = None
    design: Optional[pd.DataFrame] = None
    contrasts: List[Contrast] = field(default_factory=list)
    dispersions: Optional[DispersionEstimates] = None
    fits: Dict[str, FitResult] = field(default_factory=dict)
    tables: Dict[str, Dict[str, pd.DataFrame]] = field(default_factory=dict)
    gene_set_index: Dict[str, np.ndarray] = field(default_factory=dict)
    gene_set_results: Dict[str, Dict[str, pd.DataFrame]] = field(default_factory=dict)
    figures: Dict[str, go.Figure] = field(default_factory=dict)

    def log_cpm(self, normalized: bool = True) -> pd.DataFrame:
        """log2-CPM of the filtered genes, with or without normalization factors."""
        cm = self.normalized if normalized else self.filtered
        return cpm(cm, log=True, prior_count=self.config.normalization.prior_count)


def default_contrasts(levels: List[str]) -> Dict[str, str]:
    """Every group level against the first (sorted) level."""
    reference = levels[0]
    return {f'{level}_vs_{reference}': f'{level} - {reference}' for level in levels[1:]}


class ReportPipeline:
    """Run the analysis stages on an ``AnalysisContext``."""

    def __init__(self, config: AnalysisConfig, loader: Optional[DataLoader] = None,
                 annotator=None, gene_set_db=None):
        self.config = config
        self.loader = loader or DataLoader()
        self.annotator = annotator
        self.gene_set_db = gene_set_db
        self.preprocessor = DataPreprocessor(config.filtering, config.normalization)

    def new_context(self) -> AnalysisContext:
        return AnalysisContext(config=self.config)

    def load(self, ctx: AnalysisContext, counts: Optional[pd.DataFrame] = None,
             samples: Optional[pd.DataFrame] = None,
             gene_info: Optional[pd.DataFrame] = None) -> AnalysisContext:
        """
        Load counts and sample metadata.

        Tables passed in directly take precedence over the configured paths.
        Without a sample sheet the groups are inferred from sample names.
        """
        cfg = self.config
        if counts is None:
            if not cfg.counts_path:
                raise ValueError("No count matrix given and no counts_path configured")
            counts, gene_info = self.loader.load_counts(cfg.counts_path)

        if samples is None:
            if cfg.sample_sheet_path:
                samples = self.loader.load_sample_sheet(cfg.sample_sheet_path)
            else:
                if list(cfg.covariates) != ['group']:
                    raise CountMatrixError(
                        f"Covariates {cfg.covariates} need a sample sheet; "
                        f"only 'group' can be inferred from sample names"
                    )
                samples = self.loader.infer_sample_sheet(list(counts.columns))

        ctx.raw = build_count_matrix(counts, samples, covariates=cfg.covariates, gene_info=gene_info)
        logger.info(
            "Groups: %s",
            ', '.join(f'{g} (n={n})' for g, n in ctx.raw.group.value_counts().sort_index().items())
        )
        return ctx

    def annotate(self, ctx: AnalysisContext) -> AnalysisContext:
        """Attach symbol and cross-reference annotation when an annotator is configured."""
        annotator = self.annotator
        if annotator is None and (self.config.annotation_path or self.config.use_annotation_service):
            from utils.gene_mapping import GeneAnnotator
            annotator = GeneAnnotator(
                species=self.config.species,
                table_path=self.config.annotation_path,
                use_service=self.config.use_annotation_service
            )
            self.annotator = annotator

        if annotator is None:
            ctx.annotated = ctx.raw
            return ctx

        annotation = annotator.annotate(ctx.raw.counts.index)
        genes = ctx.raw.genes.drop(columns=[c for c in annotation.columns if c in ctx.raw.genes.columns])
        ctx.annotated = ctx.raw.with_genes(genes.join(annotation))
        return ctx

    def filter(self, ctx: AnalysisContext) -> AnalysisContext:
        ctx.filtered = self.preprocessor.filter(ctx.annotated)
        if ctx.filtered.n_genes == 0:
            raise DesignError("No genes left after filtering")
        return ctx

    def normalize(self, ctx: AnalysisContext) -> AnalysisContext:
        ctx.normalized = self.preprocessor.normalize(ctx.filtered)
        return ctx

    def build_design(self, ctx: AnalysisContext) -> AnalysisContext:
        """Group-means design with blocking covariates, plus parsed contrasts."""
        ctx.design = design_matrix(ctx.normalized.samples, block=self.config.block)
        check_design(ctx.design)

        levels = sorted(ctx.normalized.group.unique())
        exprs = self.config.contrasts or default_contrasts(levels)
        ctx.contrasts = make_contrasts(ctx.design, exprs)
        logger.info("Contrasts: %s", ', '.join(c.name for c in ctx.contrasts))
        return ctx

    def estimate_dispersions(self, ctx: AnalysisContext) -> AnalysisContext:
        ctx.dispersions = estimate_dispersions(
            ctx.normalized, ctx.design, config=self.config.dispersion
        )
        return ctx

    def fit(self, ctx: AnalysisContext) -> AnalysisContext:
        """Fit every configured strategy to the same normalized counts."""
        cfg = self.config
        for name in cfg.fit.strategies:
            fitter = get_fitter(
                name,
                fit_config=cfg.fit,
                dispersion_config=cfg.dispersion,
                norm_config=cfg.normalization,
                block=cfg.block
            )
            logger.info("Fitting strategy %s", name)
            ctx.fits[name] = fitter.fit(ctx.normalized, ctx.design, dispersions=ctx.dispersions)
        return ctx

    def test(self, ctx: AnalysisContext) -> AnalysisContext:
        """Test each contrast under each strategy."""
        lfc = self.config.testing.lfc
        for contrast in ctx.contrasts:
            ctx.tables[contrast.name] = {}
            for name, fit in ctx.fits.items():
                fitter = get_fitter(name, fit_config=self.config.fit, block=self.config.block)
                ctx.tables[contrast.name][name] = fitter.test(fit, contrast, lfc=lfc)
        return ctx

    def test_gene_sets(self, ctx: AnalysisContext) -> AnalysisContext:
        """Rotation and competitive tests of every gene set for every contrast."""
        db = self.gene_set_db
        cfg = self.config.gene_sets
        if db is None and (cfg.gmt_files or cfg.kegg_pathways):
            from utils.pathways import GeneSetDatabase
            db = GeneSetDatabase()
            for path in cfg.gmt_files:
                db.read_gmt(path)
            for pathway in cfg.kegg_pathways:
                db.fetch_kegg_pathway(pathway)
            self.gene_set_db = db

        if db is None or len(db) == 0:
            logger.info("No gene sets configured; gene set tests skipped")
            return ctx

        ctx.gene_set_index = db.to_index(
            ctx.normalized.genes, min_size=cfg.min_size, max_size=cfg.max_size
        )
        if not ctx.gene_set_index:
            logger.warning("No gene set matched enough analysed genes")
            return ctx

        if ctx.dispersions is None:
            self.estimate_dispersions(ctx)
        dge = ctx.dispersions.dge
        for contrast in ctx.contrasts:
            ctx.gene_set_results[contrast.name] = {
                'rotation': mroast(dge, ctx.gene_set_index, ctx.design, contrast, nrot=cfg.nrot),
                'competitive': camera(
                    dge, ctx.gene_set_index, ctx.design, contrast,
                    inter_gene_cor=cfg.inter_gene_cor
                ),
            }
        return ctx

    @staticmethod
    def primary_strategy(ctx: AnalysisContext) -> str:
        """First configured strategy with moderated statistics."""
        for name in ctx.fits:
            if name != 'deseq2':
                return name
        return next(iter(ctx.fits))

    def decisions(self, ctx: AnalysisContext) -> pd.DataFrame:
        """Up/down/not-significant counts per contrast and strategy."""
        testing = self.config.testing
        decisions = {
            f'{contrast}/{strategy}': decide_tests(table, p_value=testing.p_value, lfc=testing.lfc)
            for contrast, by_strategy in ctx.tables.items()
            for strategy, table in by_strategy.items()
        }
        return summarize_decisions(decisions)

    def build_figures(self, ctx: AnalysisContext, dark_mode: bool = False) -> AnalysisContext:
        """Create every report figure."""
        from plotting import (
            create_bcv_plot, create_fc_scatter, create_gene_set_barplot, create_heatmap,
            create_logcpm_boxplot, create_md_plot, create_mds_plot, create_ql_dispersion_plot,
            create_sample_weights_plot, create_voom_trend_plot, create_volcano_plot
        )

        testing = self.config.testing
        samples = ctx.normalized.samples
        figures = ctx.figures

        figures['logcpm_raw'] = create_logcpm_boxplot(
            ctx.log_cpm(normalized=False), samples, title="log2-CPM before normalization",
            dark_mode=dark_mode
        )
        log_cpm = ctx.log_cpm()
        figures['logcpm_normalized'] = create_logcpm_boxplot(
            log_cpm, samples, title="log2-CPM after normalization", dark_mode=dark_mode
        )
        if ctx.normalized.n_samples >= 3:
            figures['mds'] = create_mds_plot(log_cpm, samples, dark_mode=dark_mode)

        if ctx.dispersions is not None:
            figures['bcv'] = create_bcv_plot(ctx.dispersions, dark_mode=dark_mode)
        for name, fit in ctx.fits.items():
            if name == 'ql_glm':
                figures['ql_dispersion'] = create_ql_dispersion_plot(fit, dark_mode=dark_mode)
            elif name in ('voom', 'voom_quality'):
                v = fit.diagnostics['voom']
                figures[f'{name}_trend'] = create_voom_trend_plot(
                    v, title=f"{name}: Mean-variance trend", dark_mode=dark_mode
                )
                if name == 'voom_quality':
                    figures['sample_weights'] = create_sample_weights_plot(
                        v.sample_weights, samples, dark_mode=dark_mode
                    )

        comparison = StrategyComparison(pvalue_threshold=testing.p_value, log2fc_threshold=testing.lfc)
        strategies = list(ctx.fits)
        for contrast, by_strategy in ctx.tables.items():
            for strategy, table in by_strategy.items():
                key = f'{contrast}/{strategy}'
                figures[f'{key}/volcano'] = create_volcano_plot(
                    table, title=f"{contrast} ({strategy})",
                    log2fc_threshold=testing.lfc, pvalue_threshold=testing.p_value,
                    dark_mode=dark_mode
                )
                figures[f'{key}/md'] = create_md_plot(
                    table, title=f"{contrast} ({strategy})",
                    log2fc_threshold=testing.lfc, pvalue_threshold=testing.p_value,
                    dark_mode=dark_mode
                )

            primary = by_strategy[self.primary_strategy(ctx)]
            top = primary.head(testing.top_n)
            figures[f'{contrast}/heatmap'] = create_heatmap(
                log_cpm, top['Gene'].tolist(), samples=samples,
                labels=primary.set_index('Gene')['symbol'],
                title=f"Top DE genes: {contrast}", dark_mode=dark_mode
            )

            for i, a in enumerate(strategies):
                for b in strategies[i + 1:]:
                    merged = comparison.get_concordance(by_strategy, a, b)
                    figures[f'{contrast}/{a}_vs_{b}'] = create_fc_scatter(
                        merged, a, b, dark_mode=dark_mode
                    )

        for contrast, results in ctx.gene_set_results.items():
            figures[f'{contrast}/gene_sets'] = create_gene_set_barplot(
                results['rotation'], title=f"Rotation gene set tests: {contrast}",
                top_n=testing.top_n, dark_mode=dark_mode
            )
        logger.info("Built %d figures", len(figures))
        return ctx

    def export(self, ctx: AnalysisContext, exporter=None):
        """Write tables and figures into the output directory."""
        from utils.export import ReportExporter, create_deg_report

        exporter = exporter or ReportExporter(self.config.output_dir)
        flat = {
            f'{contrast}/{strategy}': table
            for contrast, by_strategy in ctx.tables.items()
            for strategy, table in by_strategy.items()
        }
        for name, table in flat.items():
            exporter.write_table(table, name, format='csv')
        if flat:
            exporter.write_workbook(flat, 'top_tables')
            testing = self.config.testing
            exporter.write_table(
                create_deg_report(flat, p_value=testing.p_value, lfc=testing.lfc), 'summary'
            )
            exporter.write_table(self.decisions(ctx), 'decisions', index=True)

        for contrast, results in ctx.gene_set_results.items():
            for test_name, table in results.items():
                exporter.write_table(table, f'{contrast}/gene_sets_{test_name}', index=True)

        if ctx.dispersions is not None:
            exporter.write_table(ctx.dispersions.table, 'dispersions', index=True)

        for name, fig in ctx.figures.items():
            exporter.write_figure(fig, name)
        return exporter.written

    def run(self, counts: Optional[pd.DataFrame] = None, samples: Optional[pd.DataFrame] = None,
            figures: bool = True, export: bool = False) -> AnalysisContext:
        """Run every stage and return the populated context."""
        ctx = self.new_context()
        self.load(ctx, counts=counts, samples=samples)
        self.annotate(ctx)
        self.filter(ctx)
        self.normalize(ctx)
        self.build_design(ctx)
        if 'ql_glm' in self.config.fit.strategies:
            self.estimate_dispersions(ctx)
        self.fit(ctx)
        self.test(ctx)
        self.test_gene_sets(ctx)
        if figures:
            self.build_figures(ctx)
        if export:
            self.export(ctx)
        return ctx


def run_report(config: AnalysisConfig, **kwargs) -> AnalysisContext:
    """Convenience wrapper: run the full pipeline for a configuration."""
    return ReportPipeline(config).run(**kwargs)
