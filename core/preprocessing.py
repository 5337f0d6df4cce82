"""
Filtering and scale normalization of count matrices.
"""

import logging
from typing import Optional

import edgepython as ep
import numpy as np
import pandas as pd

from .config import NORM_METHODS, FilterConfig, NormalizationConfig
from .count_matrix import CountMatrix

logger = logging.getLogger(__name__)


class DataPreprocessor:
    """Handles low-count filtering, annotation filtering and normalization."""

    def __init__(
        self,
        filter_config: Optional[FilterConfig] = None,
        norm_config: Optional[NormalizationConfig] = None
    ):
        self.filter_config = filter_config or FilterConfig()
        self.norm_config = norm_config or NormalizationConfig()

    def filter_low_counts(self, cm: CountMatrix) -> CountMatrix:
        """
        Drop genes that are not expressed at a worthwhile level.

        Args:
            cm: Count matrix

        Returns:
            Filtered count matrix (library sizes kept unless configured otherwise)
        """
        cfg = self.filter_config
        keep = filter_by_expr(
            cm,
            min_count=cfg.min_count,
            min_total_count=cfg.min_total_count,
            large_n=cfg.large_n,
            min_prop=cfg.min_prop
        )
        logger.info("Expression filter keeps %d of %d genes", keep.sum(), cm.n_genes)
        return cm.subset_genes(keep, keep_lib_sizes=cfg.keep_lib_sizes)

    def drop_unannotated(self, cm: CountMatrix, columns=('symbol',)) -> CountMatrix:
        """
        Drop genes whose annotation is incomplete.

        Args:
            cm: Count matrix with gene annotation
            columns: Annotation columns that must be present

        Returns:
            Count matrix restricted to annotated genes
        """
        present = [c for c in columns if c in cm.genes.columns]
        if not present:
            logger.warning("No annotation columns %s found; nothing dropped", list(columns))
            return cm

        keep = cm.genes[present].notna().all(axis=1).values
        n_dropped = int((~keep).sum())
        if n_dropped:
            logger.info("Dropping %d genes with incomplete annotation", n_dropped)
        return cm.subset_genes(keep, keep_lib_sizes=self.filter_config.keep_lib_sizes)

    def filter(self, cm: CountMatrix) -> CountMatrix:
        """Apply the full filtering policy (expression, then annotation)."""
        cm = self.filter_low_counts(cm)
        if self.filter_config.drop_unannotated:
            cm = self.drop_unannotated(cm)
        return cm

    def normalize(self, cm: CountMatrix) -> CountMatrix:
        """Attach scale normalization factors to the count matrix."""
        cfg = self.norm_config
        factors = calc_norm_factors(
            cm,
            method=cfg.method,
            log_ratio_trim=cfg.log_ratio_trim,
            sum_trim=cfg.sum_trim
        )
        logger.info(
            "%s normalization factors range %.3f-%.3f",
            cfg.method, factors.min(), factors.max()
        )
        return cm.with_norm_factors(factors)


def filter_by_expr(
    cm: CountMatrix,
    group: Optional[pd.Series] = None,
    min_count: float = 10,
    min_total_count: float = 15,
    large_n: int = 10,
    min_prop: float = 0.7
) -> np.ndarray:
    """
    Determine which genes have sufficiently large counts to be retained.

    A gene is kept when its CPM reaches ``min_count`` scaled to the median
    library size in at least as many samples as the smallest group, and its
    total count reaches ``min_total_count``.

    Args:
        cm: Count matrix
        group: Group labels (defaults to ``cm.group``)
        min_count: Minimum count in a library of median size
        min_total_count: Minimum total count
        large_n: Samples per group considered large
        min_prop: Minimum proportion of samples in the smallest group
            that must express the gene, for large groups

    Returns:
        Boolean mask over genes
    """
    if group is None:
        group = cm.group
    return np.asarray(ep.filter_by_expr(
        cm.counts.values,
        group=pd.Series(group).astype(str).values,
        lib_size=cm.effective_lib_size.values,
        min_count=min_count,
        min_total_count=min_total_count,
        large_n=large_n,
        min_prop=min_prop
    ), dtype=bool)


def calc_norm_factors(
    cm: CountMatrix,
    method: str = 'TMM',
    log_ratio_trim: float = 0.3,
    sum_trim: float = 0.05
) -> pd.Series:
    """
    Calculate scale normalization factors.

    Args:
        cm: Count matrix
        method: 'TMM', 'TMMwsp', 'RLE', 'upperquartile', 'median_ratio' or 'none'
        log_ratio_trim: Fraction trimmed from each end of the M values (TMM)
        sum_trim: Fraction trimmed from each end of the A values (TMM)

    Returns:
        Normalization factors with geometric mean 1, indexed by sample
    """
    if method == 'median_ratio':
        factors = _median_ratio_factors(cm)
    elif method in NORM_METHODS:
        factors = ep.calc_norm_factors(
            cm.counts.values,
            lib_size=cm.lib_size.values,
            method=method,
            logratio_trim=log_ratio_trim,
            sum_trim=sum_trim
        )
    else:
        raise ValueError(f"Unknown normalization method: {method}")

    return pd.Series(np.asarray(factors, dtype=float), index=cm.counts.columns, name='norm_factors')


def _median_ratio_factors(cm: CountMatrix) -> np.ndarray:
    """DESeq2 median-of-ratios size factors, expressed relative to library size."""
    try:
        from pydeseq2.preprocessing import deseq2_norm
    except ImportError:
        raise ImportError(
            "PyDESeq2 is required for median-ratio normalization. "
            "Install with: pip install pydeseq2"
        )

    expressed = cm.counts[cm.counts.sum(axis=1) > 0]
    _, size_factors = deseq2_norm(expressed.T)
    factors = np.asarray(size_factors, dtype=float) / cm.lib_size.values
    return factors / np.exp(np.mean(np.log(factors)))


def cpm(
    cm: CountMatrix,
    log: bool = False,
    prior_count: float = 2.0
) -> pd.DataFrame:
    """
    Counts per million using effective library sizes.

    With ``log=True`` a prior count proportional to library size is added
    before taking log2, so the transform is monotone within each sample.

    Args:
        cm: Count matrix
        log: Return log2-CPM
        prior_count: Average count added to each observation when logging

    Returns:
        Genes x samples DataFrame
    """
    values = ep.cpm(
        cm.counts.values,
        lib_size=cm.effective_lib_size.values,
        log=log,
        prior_count=prior_count
    )
    return pd.DataFrame(values, index=cm.counts.index, columns=cm.counts.columns)


def ave_log_cpm(cm: CountMatrix, prior_count: float = 2.0) -> pd.Series:
    """Average log2-CPM per gene."""
    values = ep.ave_log_cpm(
        cm.counts.values,
        lib_size=cm.effective_lib_size.values,
        prior_count=prior_count
    )
    return pd.Series(values, index=cm.counts.index, name='AveLogCPM')
