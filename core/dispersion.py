"""
Negative binomial dispersion estimation using edgepython.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import edgepython as ep
import numpy as np
import pandas as pd

from .config import DispersionConfig
from .count_matrix import CountMatrix

logger = logging.getLogger(__name__)


@dataclass
class DispersionEstimates:
    """
    Common, trended and tagwise NB dispersions.

    Attributes:
        table: Per-gene frame with columns ``tagwise``, ``trended`` and
            ``AveLogCPM``
        common: Common dispersion
        prior_df: Prior degrees of freedom of the tagwise shrinkage
        trend_method: Trend used for the mean-dispersion relationship
        dge: DGEList carrying the estimates, reused by the GLM fit and
            the gene set tests
    """

    table: pd.DataFrame
    common: float
    prior_df: Any
    trend_method: str
    dge: Any = None

    @property
    def bcv(self) -> float:
        """Biological coefficient of variation implied by the common dispersion."""
        return float(np.sqrt(self.common))

    def select(self, use: str = 'auto') -> Optional[pd.Series]:
        """
        Dispersion per gene for the requested estimate.

        ``auto`` returns None so that the quasi-likelihood fit picks its own
        value from the trend.
        """
        if use == 'auto':
            return None
        if use == 'common':
            return pd.Series(self.common, index=self.table.index, name='dispersion')
        if use not in ('tagwise', 'trended'):
            raise ValueError(f"Unknown dispersion estimate: {use}")
        return self.table[use].rename('dispersion')


def design_formula(block: Sequence[str] = ()) -> str:
    """Wilkinson formula with blocking covariates before the condition."""
    terms = list(block) + ['condition']
    return '~' + ' + '.join(terms)


def deseq_metadata(cm: CountMatrix, block: Sequence[str] = ()):
    """
    Sample metadata for PyDESeq2.

    Group labels are replaced by plain codes (``c0``, ``c1``, ...) in a
    ``condition`` column so that level names never clash with PyDESeq2's
    coefficient naming.
    """
    levels = sorted(cm.group.unique())
    codes = {level: f'c{i}' for i, level in enumerate(levels)}

    metadata = pd.DataFrame(index=cm.counts.columns)
    metadata['condition'] = cm.group.map(codes).values
    for col in block:
        metadata[col] = cm.samples[col].astype(str).values
    return metadata, codes


def estimate_dispersions(
    cm: CountMatrix,
    design: pd.DataFrame,
    config: Optional[DispersionConfig] = None
) -> DispersionEstimates:
    """
    Estimate common, trended and tagwise dispersions with ``estimate_disp``.

    Args:
        cm: Filtered, normalized count matrix
        design: Samples x coefficients design matrix
        config: Dispersion settings

    Returns:
        DispersionEstimates
    """
    config = config or DispersionConfig()
    dge = ep.estimate_disp(
        cm.to_dgelist(),
        design=np.asarray(design, dtype=float),
        trend_method=config.trend_method,
        robust=config.robust,
    )

    common = float(dge['common.dispersion'])
    trended = np.broadcast_to(
        np.asarray(dge['trended.dispersion'], dtype=float), (cm.n_genes,)
    )
    tagwise = dge.get('tagwise.dispersion')
    tagwise = trended if tagwise is None else np.asarray(tagwise, dtype=float)

    table = pd.DataFrame(
        {
            'tagwise': tagwise,
            'trended': trended,
            'AveLogCPM': np.asarray(dge['AveLogCPM'], dtype=float),
        },
        index=cm.counts.index,
    )

    logger.info(
        "Dispersions estimated for %d genes: common %.4f (BCV %.3f)",
        len(table), common, np.sqrt(common)
    )

    return DispersionEstimates(
        table=table,
        common=common,
        prior_df=dge.get('prior.df'),
        trend_method=config.trend_method,
        dge=dge,
    )
