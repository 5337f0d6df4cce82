"""
voom precision weights and sample quality weights for log-CPM values.

voom estimates the mean-variance relationship of log-counts with a LOWESS
curve through sqrt(residual sd) against average log-count, then converts
the curve into an inverse-variance weight for every observation. The
heavy lifting is done by ``edgepython.voom``; this module keeps the result
aligned with gene and sample names.
"""

import logging
from dataclasses import dataclass

import edgepython as ep
import numpy as np
import pandas as pd

from .count_matrix import CountMatrix

logger = logging.getLogger(__name__)


@dataclass
class VoomResult:
    """
    voom-transformed expression and the weighted linear model fit.

    Attributes:
        E: Genes x samples log2-CPM
        weights: Genes x samples precision weights (sample weights included)
        sample_weights: Quality weight per sample (ones for plain voom)
        trend_x: Average log2-count per gene
        trend_y: sqrt(residual standard deviation) per gene
        trend_line: Sorted (x, y) LOWESS curve
        coefficients: Genes x coefficients on the log2 scale
        sigma: Residual standard deviation per gene
        df_residual: Residual degrees of freedom per gene
        amean: Average log2-CPM per gene
    """

    E: pd.DataFrame
    weights: np.ndarray
    sample_weights: pd.Series
    trend_x: np.ndarray
    trend_y: np.ndarray
    trend_line: np.ndarray
    coefficients: np.ndarray
    sigma: np.ndarray
    df_residual: np.ndarray
    amean: np.ndarray


def voom(
    cm: CountMatrix,
    design: pd.DataFrame,
    span: float = 0.5,
    sample_weights: bool = False,
    prior_n: float = 10.0
) -> VoomResult:
    """
    Transform counts to log-CPM, estimate observation-level weights and fit.

    Args:
        cm: Normalized count matrix
        design: Design matrix
        span: LOWESS span
        sample_weights: Also estimate sample quality weights
        prior_n: Prior genes for squeezing the sample weights towards one

    Returns:
        VoomResult
    """
    out = ep.voom(
        cm.counts.values.astype(float),
        design=np.asarray(design, dtype=float),
        lib_size=cm.effective_lib_size.values.astype(float),
        span=span,
        sample_weights=sample_weights,
        prior_n=prior_n,
        save_plot=True,
    )

    sw = out.get('sample_weights')
    if sw is None:
        sw = np.ones(cm.n_samples)
    else:
        logger.info("Sample quality weights range %.3f-%.3f", np.min(sw), np.max(sw))

    xy = out.get('voom_xy', {'x': np.array([]), 'y': np.array([])})
    line = out.get('voom_line', {'x': np.array([]), 'y': np.array([])})

    return VoomResult(
        E=pd.DataFrame(out['E'], index=cm.counts.index, columns=cm.counts.columns),
        weights=np.asarray(out['weights'], dtype=float),
        sample_weights=pd.Series(sw, index=cm.counts.columns, name='sample_weight'),
        trend_x=np.asarray(xy['x'], dtype=float),
        trend_y=np.asarray(xy['y'], dtype=float),
        trend_line=np.column_stack([line['x'], line['y']]),
        coefficients=np.asarray(out['coefficients'], dtype=float),
        sigma=np.asarray(out['sigma'], dtype=float),
        df_residual=np.asarray(out['df_residual'], dtype=float),
        amean=np.asarray(out['Amean'], dtype=float),
    )
