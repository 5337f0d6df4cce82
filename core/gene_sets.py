"""
Gene set tests.

Self-contained rotation tests (ROAST, Wu et al. 2010) ask whether the genes
of a set are differentially expressed at all. Competitive tests (camera)
ask whether they are more differentially expressed than the other genes,
allowing for inter-gene correlation.

All tests take the DGEList returned by dispersion estimation; counts are
turned into NB z-scores under the null model before testing.
"""

import logging
from typing import Dict, Sequence

import edgepython as ep
import numpy as np
import pandas as pd

from .design import Contrast

logger = logging.getLogger(__name__)

ROTATION_COLUMNS = ['NGenes', 'PropDown', 'PropUp', 'Direction', 'PValue', 'FDR',
                    'PValue.Mixed', 'FDR.Mixed']
COMPETITIVE_COLUMNS = ['NGenes', 'Direction', 'PValue', 'FDR']


def _prepare_index(index: Dict[str, Sequence[int]]) -> Dict[str, list]:
    prepared = {}
    for name, members in index.items():
        if len(members) == 0:
            logger.warning("Gene set '%s' has no genes in the data; skipped", name)
            continue
        prepared[name] = [int(i) for i in members]
    return prepared


def roast(
    dge,
    members: Sequence[int],
    design: pd.DataFrame,
    contrast: Contrast,
    nrot: int = 1999
) -> pd.DataFrame:
    """
    Rotation test for a single gene set.

    Args:
        dge: DGEList with dispersion estimates
        members: Row positions of the set's genes
        design: Design matrix
        contrast: Contrast to test
        nrot: Number of rotations

    Returns:
        DataFrame indexed by Down, Up, UpOrDown and Mixed with
        ``Active.Prop`` and ``P.Value``
    """
    if len(members) == 0:
        raise ValueError("Gene set has no genes in the expression data")
    return ep.roast(
        dge, [int(i) for i in members],
        design=np.asarray(design, dtype=float),
        contrast=contrast.values(design),
        nrot=nrot,
    )


def mroast(
    dge,
    index: Dict[str, Sequence[int]],
    design: pd.DataFrame,
    contrast: Contrast,
    nrot: int = 1999
) -> pd.DataFrame:
    """
    Rotation tests for many gene sets with FDR across sets.

    Every set is scored against the same rotations.

    Args:
        dge: DGEList with dispersion estimates
        index: Gene set name to row positions
        design: Design matrix
        contrast: Contrast to test
        nrot: Number of rotations

    Returns:
        DataFrame indexed by set with NGenes, PropDown, PropUp, Direction,
        PValue, FDR, PValue.Mixed and FDR.Mixed, ordered by PValue
    """
    index = _prepare_index(index)
    if not index:
        return pd.DataFrame(columns=ROTATION_COLUMNS)

    table = ep.mroast(
        dge, index,
        design=np.asarray(design, dtype=float),
        contrast=contrast.values(design),
        nrot=nrot,
    )
    logger.info("Rotation tests for %d gene sets (contrast '%s')", len(table), contrast.name)
    return table[ROTATION_COLUMNS]


def camera(
    dge,
    index: Dict[str, Sequence[int]],
    design: pd.DataFrame,
    contrast: Contrast,
    inter_gene_cor: float = 0.01
) -> pd.DataFrame:
    """
    Competitive test of every gene set against the remaining genes.

    Returns:
        DataFrame indexed by set with NGenes, Direction, PValue and FDR
    """
    index = _prepare_index(index)
    if not index:
        return pd.DataFrame(columns=COMPETITIVE_COLUMNS)

    table = ep.camera(
        dge, index,
        design=np.asarray(design, dtype=float),
        contrast=contrast.values(design),
        inter_gene_cor=inter_gene_cor,
    )
    logger.info("Competitive tests for %d gene sets (contrast '%s')", len(table), contrast.name)
    return table[COMPETITIVE_COLUMNS]
