"""
Count matrix container shared by all pipeline stages.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

import edgepython as ep
import numpy as np
import pandas as pd

from .errors import CountMatrixError


@dataclass(frozen=True)
class CountMatrix:
    """
    Genes x samples integer counts with sample and gene level data.

    Attributes:
        counts: Genes (rows) x samples (columns) non-negative integers
        samples: Sample metadata indexed by sample name, same order as the
            count columns; always holds a ``group`` column
        genes: Gene level data indexed like ``counts`` (annotation, length)
        lib_size: Library size per sample
        norm_factors: Scale normalization factor per sample
    """

    counts: pd.DataFrame
    samples: pd.DataFrame
    genes: pd.DataFrame = field(default_factory=pd.DataFrame)
    lib_size: Optional[pd.Series] = None
    norm_factors: Optional[pd.Series] = None

    def __post_init__(self):
        if self.lib_size is None:
            object.__setattr__(self, 'lib_size', self.counts.sum(axis=0).astype(float))
        if self.norm_factors is None:
            object.__setattr__(
                self, 'norm_factors', pd.Series(1.0, index=self.counts.columns)
            )
        if self.genes.empty and len(self.genes.columns) == 0:
            object.__setattr__(self, 'genes', pd.DataFrame(index=self.counts.index))
        self.validate()

    def validate(self):
        """Check the structural invariants; raise CountMatrixError if broken."""
        if not self.counts.index.is_unique:
            dups = self.counts.index[self.counts.index.duplicated()].unique().tolist()
            raise CountMatrixError(f"Duplicated gene identifiers: {dups[:5]}")
        if not self.counts.columns.is_unique:
            raise CountMatrixError("Duplicated sample names in count matrix")
        if list(self.samples.index) != list(self.counts.columns):
            raise CountMatrixError(
                "Sample metadata rows do not match count matrix columns"
            )
        if 'group' not in self.samples.columns:
            raise CountMatrixError("Sample metadata has no 'group' column")
        if not self.genes.index.equals(self.counts.index):
            raise CountMatrixError("Gene data is not aligned with count rows")
        if (self.counts.values < 0).any():
            raise CountMatrixError("Counts must be non-negative")

    @property
    def n_genes(self) -> int:
        return self.counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self.counts.shape[1]

    @property
    def group(self) -> pd.Series:
        return self.samples['group']

    @property
    def effective_lib_size(self) -> pd.Series:
        """Library sizes multiplied by normalization factors."""
        return self.lib_size * self.norm_factors

    def subset_genes(self, keep, keep_lib_sizes: bool = True) -> 'CountMatrix':
        """
        Return a new matrix restricted to the selected genes.

        Args:
            keep: Boolean mask or list of gene identifiers
            keep_lib_sizes: Keep the current library sizes; otherwise they
                are recomputed from the remaining genes

        Returns:
            CountMatrix with the selected rows
        """
        keep = np.asarray(keep)
        if keep.dtype == bool:
            index = self.counts.index[keep]
        else:
            index = pd.Index(keep)

        counts = self.counts.loc[index]
        lib_size = self.lib_size if keep_lib_sizes else counts.sum(axis=0).astype(float)

        return replace(
            self,
            counts=counts,
            genes=self.genes.loc[index],
            lib_size=lib_size,
        )

    def with_norm_factors(self, norm_factors) -> 'CountMatrix':
        factors = pd.Series(np.asarray(norm_factors, dtype=float), index=self.counts.columns)
        return replace(self, norm_factors=factors)

    def with_genes(self, genes: pd.DataFrame) -> 'CountMatrix':
        return replace(self, genes=genes.reindex(self.counts.index))

    def to_dgelist(self):
        """
        Build an edgepython DGEList from the counts and library sizes.

        The DGEList numbers its rows and columns, so genes and samples keep
        the order of ``counts``.
        """
        return ep.make_dgelist(
            self.counts.values,
            lib_size=self.lib_size.values,
            norm_factors=self.norm_factors.values,
            group=self.group.astype(str).values,
        )
