"""
Differential expression fitting strategies.

Each strategy fits a per-gene model to the same filtered, normalized count
matrix and tests contrasts of the design coefficients:

- ``ql_glm``: negative binomial GLM with quasi-likelihood F-tests
- ``voom``: log-CPM linear model with voom precision weights
- ``voom_quality``: voom combined with sample quality weights
- ``deseq2``: PyDESeq2 Wald test (pairwise group contrasts)
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Union

import edgepython as ep
import numpy as np
import pandas as pd
from scipy import stats

from .analysis import make_top_table
from .config import DispersionConfig, FitConfig, NormalizationConfig
from .count_matrix import CountMatrix
from .design import Contrast, check_design
from .dispersion import DispersionEstimates, deseq_metadata, design_formula, estimate_dispersions
from .errors import ContrastError
from .preprocessing import ave_log_cpm
from .voom import voom

logger = logging.getLogger(__name__)

LN2 = np.log(2)


@dataclass
class FitResult:
    """
    Per-gene model fit shared by the strategies.

    Coefficients are on the log2 scale.

    Attributes:
        strategy: Name of the strategy that produced the fit
        genes: Gene identifiers
        design: Design matrix
        coefficients: Genes x coefficients estimates
        s2: Residual variance or quasi-dispersion per gene
        df_residual: Residual degrees of freedom per gene
        df_prior: Empirical Bayes prior degrees of freedom
        s2_prior: Prior variance per gene
        s2_post: Posterior (squeezed) variance per gene
        ave_expr: Average log2-CPM per gene
        symbols: Gene symbols, when annotated
        diagnostics: Strategy-specific data for diagnostic plots and tests
    """

    strategy: str
    genes: pd.Index
    design: pd.DataFrame
    coefficients: pd.DataFrame
    s2: np.ndarray
    df_residual: np.ndarray
    df_prior: Union[float, np.ndarray]
    s2_prior: np.ndarray
    s2_post: np.ndarray
    ave_expr: np.ndarray
    symbols: Optional[pd.Series] = None
    diagnostics: Dict = field(default_factory=dict)

    @property
    def df_total(self) -> np.ndarray:
        return np.minimum(self.df_residual + self.df_prior, np.sum(self.df_residual))


class Fitter:
    """Base class for fitting strategies."""

    name = None

    def __init__(
        self,
        fit_config: Optional[FitConfig] = None,
        dispersion_config: Optional[DispersionConfig] = None,
        norm_config: Optional[NormalizationConfig] = None,
        block: Sequence[str] = ()
    ):
        self.fit_config = fit_config or FitConfig()
        self.dispersion_config = dispersion_config or DispersionConfig()
        self.norm_config = norm_config or NormalizationConfig()
        self.block = list(block)

    def fit(
        self,
        cm: CountMatrix,
        design: pd.DataFrame,
        dispersions: Optional[DispersionEstimates] = None
    ) -> FitResult:
        raise NotImplementedError

    def test(self, fit: FitResult, contrast: Contrast, lfc: float = 0.0) -> pd.DataFrame:
        """
        Test a contrast for every gene.

        Args:
            fit: Result of ``fit``
            contrast: Contrast of the design coefficients
            lfc: Minimum absolute log2 fold change for TREAT p-values

        Returns:
            TopTable ranked by p-value
        """
        raise NotImplementedError

    def _symbols(self, cm: CountMatrix) -> Optional[pd.Series]:
        if 'symbol' in cm.genes.columns:
            return cm.genes['symbol']
        return None


class QLGLMFitter(Fitter):
    """Negative binomial GLM with empirical Bayes quasi-likelihood moderation."""

    name = 'ql_glm'

    def fit(self, cm, design, dispersions=None):
        check_design(design)
        if dispersions is None or dispersions.dge is None:
            dispersions = estimate_dispersions(cm, design, config=self.dispersion_config)

        dispersion = dispersions.select(self.dispersion_config.use)
        if dispersion is not None:
            dispersion = dispersion.reindex(cm.counts.index).values

        glm = ep.glm_ql_fit(
            dispersions.dge,
            design=np.asarray(design, dtype=float),
            dispersion=dispersion,
            robust=self.fit_config.robust,
        )

        n_genes = cm.n_genes
        df_residual = np.broadcast_to(
            np.asarray(glm['df.residual.adj'], dtype=float), (n_genes,)
        ).copy()
        with np.errstate(divide='ignore', invalid='ignore'):
            s2 = np.asarray(glm['deviance.adj'], dtype=float) / df_residual
        df_prior = glm['df.prior']
        logger.info("QL prior df %s", np.round(np.median(np.atleast_1d(df_prior)), 2))

        return FitResult(
            strategy=self.name,
            genes=cm.counts.index,
            design=design,
            coefficients=pd.DataFrame(
                np.asarray(glm['coefficients']) / LN2, index=cm.counts.index, columns=design.columns
            ),
            s2=s2,
            df_residual=df_residual,
            df_prior=df_prior,
            s2_prior=np.broadcast_to(np.asarray(glm['s2.prior'], dtype=float), (n_genes,)).copy(),
            s2_post=np.asarray(glm['s2.post'], dtype=float),
            ave_expr=np.asarray(glm['AveLogCPM'], dtype=float),
            symbols=self._symbols(cm),
            diagnostics={'dispersions': dispersions, 'glm': glm},
        )

    def test(self, fit, contrast, lfc=0.0):
        c = contrast.values(fit.design)
        glm = fit.diagnostics['glm']

        if lfc > 0:
            result = ep.glm_treat(glm, contrast=c, lfc=lfc)
            table = result['table']
            pvalue = table['PValue'].values
            # signed normal quantile of the interval-null p-value
            stat = np.sign(table['logFC'].values) * stats.norm.isf(np.clip(pvalue, 1e-300, 1) / 2)
        else:
            result = ep.glm_ql_ftest(glm, contrast=c)
            table = result['table']
            pvalue = table['PValue'].values
            stat = np.sign(table['logFC'].values) * np.sqrt(np.maximum(table['F'].values, 0))

        logger.info("%s: tested contrast '%s'", self.name, contrast.name)
        return make_top_table(
            genes=fit.genes,
            log2fc=table['logFC'].values,
            ave_expr=fit.ave_expr,
            stat=stat,
            pvalue=pvalue,
            symbols=fit.symbols,
        )


class VoomFitter(Fitter):
    """voom precision weights with a moderated linear model."""

    name = 'voom'

    def fit(self, cm, design, dispersions=None):
        check_design(design)
        v = self._transform(cm, design)
        s2 = v.sigma ** 2
        squeezed = ep.squeeze_var(
            s2, v.df_residual, covariate=v.amean, robust=self.fit_config.robust
        )

        return FitResult(
            strategy=self.name,
            genes=cm.counts.index,
            design=design,
            coefficients=pd.DataFrame(v.coefficients, index=cm.counts.index, columns=design.columns),
            s2=s2,
            df_residual=v.df_residual,
            df_prior=squeezed['df_prior'],
            s2_prior=np.broadcast_to(np.asarray(squeezed['var_prior'], dtype=float), s2.shape).copy(),
            s2_post=np.asarray(squeezed['var_post'], dtype=float),
            ave_expr=v.amean,
            symbols=self._symbols(cm),
            diagnostics={'voom': v},
        )

    def test(self, fit, contrast, lfc=0.0):
        c = contrast.values(fit.design)
        v = fit.diagnostics['voom']
        X = np.asarray(fit.design, dtype=float)

        # c' (X' W_g X)^-1 c for every gene
        xtwx = np.einsum('si,gs,sj->gij', X, v.weights, X)
        cov_unscaled = np.linalg.inv(xtwx)
        stdev_unscaled = np.sqrt(np.einsum('i,gij,j->g', c, cov_unscaled, c))

        estimate = fit.coefficients.values @ c
        stat, pvalue = moderated_t(estimate, stdev_unscaled, fit.s2_post, fit.df_total, lfc=lfc)

        logger.info("%s: tested contrast '%s'", self.name, contrast.name)
        return make_top_table(
            genes=fit.genes,
            log2fc=estimate,
            ave_expr=fit.ave_expr,
            stat=stat,
            pvalue=pvalue,
            symbols=fit.symbols,
        )

    def _transform(self, cm, design):
        return voom(cm, design, span=self.fit_config.lowess_span)


class VoomQualityFitter(VoomFitter):
    """voom with sample quality weights."""

    name = 'voom_quality'

    def _transform(self, cm, design):
        return voom(
            cm, design,
            span=self.fit_config.lowess_span,
            sample_weights=True,
            prior_n=self.fit_config.quality_prior_n
        )


def moderated_t(
    coef: np.ndarray,
    stdev_unscaled: np.ndarray,
    var_post: np.ndarray,
    df_total: np.ndarray,
    lfc: float = 0.0
):
    """
    Moderated t-statistics and two-sided p-values.

    With ``lfc > 0`` the p-values test ``|coef| > lfc`` instead of
    ``coef != 0`` (TREAT).

    Returns:
        Tuple (t, pvalue)
    """
    se = stdev_unscaled * np.sqrt(var_post)

    if lfc == 0:
        t = coef / se
        p = 2 * stats.t.sf(np.abs(t), df_total)
        return t, p

    acoef = np.abs(coef)
    t_right = (acoef - lfc) / se
    t_left = (acoef + lfc) / se
    p = stats.t.sf(t_right, df_total) + stats.t.sf(t_left, df_total)
    t = np.sign(coef) * np.maximum(t_right, 0)
    return t, np.minimum(p, 1.0)


class DESeq2Fitter(Fitter):
    """
    PyDESeq2 Wald test.

    Only pairwise contrasts between two group levels are supported.
    """

    name = 'deseq2'

    def fit(self, cm, design, dispersions=None):
        try:
            from pydeseq2.dds import DeseqDataSet
            from pydeseq2.default_inference import DefaultInference
        except ImportError:
            raise ImportError(
                "PyDESeq2 is required for count data analysis. "
                "Install with: pip install pydeseq2"
            )

        check_design(design)
        metadata, codes = deseq_metadata(cm, self.block)
        counts_df = cm.counts.T.astype(int)
        counts_df.columns = counts_df.columns.astype(str)
        inference = DefaultInference(n_cpus=self.dispersion_config.n_cpus)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")

            dds = DeseqDataSet(
                counts=counts_df,
                metadata=metadata,
                design=design_formula(self.block),
                fit_type=self.dispersion_config.fit_type,
                refit_cooks=True,
                inference=inference,
                quiet=True,
            )
            dds.deseq2()

        ave = ave_log_cpm(cm, prior_count=self.norm_config.prior_count).values
        n_genes, p = cm.n_genes, design.shape[1]
        empty = np.full(n_genes, np.nan)

        return FitResult(
            strategy=self.name,
            genes=cm.counts.index,
            design=design,
            coefficients=pd.DataFrame(np.nan, index=cm.counts.index, columns=design.columns),
            s2=np.asarray(dds.var['dispersions'], dtype=float),
            df_residual=np.full(n_genes, float(design.shape[0] - p)),
            df_prior=0.0,
            s2_prior=empty,
            s2_post=empty,
            ave_expr=ave,
            symbols=self._symbols(cm),
            diagnostics={
                'dds': dds,
                'inference': inference,
                'codes': codes,
                'formula': design_formula(self.block),
            },
        )

    def test(self, fit, contrast, lfc=0.0):
        from pydeseq2.ds import DeseqStats

        numerator, denominator = self._pairwise_levels(fit, contrast)
        codes = fit.diagnostics['codes']

        kwargs = {}
        if lfc > 0:
            kwargs = {'lfc_null': lfc, 'alt_hypothesis': 'greaterAbs'}

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            stat_res = DeseqStats(
                fit.diagnostics['dds'],
                contrast=['condition', codes[numerator], codes[denominator]],
                inference=fit.diagnostics['inference'],
                quiet=True,
                **kwargs
            )
            stat_res.summary()
            results_df = stat_res.results_df

        results_df = results_df.reindex(fit.genes.astype(str))
        logger.info("%s: tested contrast '%s'", self.name, contrast.name)

        return make_top_table(
            genes=fit.genes,
            log2fc=results_df['log2FoldChange'].values,
            ave_expr=fit.ave_expr,
            stat=results_df['stat'].values,
            pvalue=results_df['pvalue'].values,
            symbols=fit.symbols,
        )

    @staticmethod
    def _pairwise_levels(fit: FitResult, contrast: Contrast):
        c = pd.Series(contrast.values(fit.design), index=fit.design.columns)
        nonzero = c[c != 0]
        levels = set(fit.diagnostics['codes'])
        if (
            len(nonzero) != 2
            or not set(nonzero.index) <= levels
            or sorted(nonzero.values) != [-1.0, 1.0]
        ):
            raise ContrastError(
                f"The deseq2 strategy only supports pairwise group contrasts; "
                f"got '{contrast.name}'"
            )
        return nonzero.idxmax(), nonzero.idxmin()


FITTERS = {
    QLGLMFitter.name: QLGLMFitter,
    VoomFitter.name: VoomFitter,
    VoomQualityFitter.name: VoomQualityFitter,
    DESeq2Fitter.name: DESeq2Fitter,
}


def get_fitter(name: str, **kwargs) -> Fitter:
    """Instantiate a fitting strategy by name."""
    if name not in FITTERS:
        raise ValueError(f"Unknown strategy '{name}'. Choose from: {', '.join(FITTERS)}")
    return FITTERS[name](**kwargs)
