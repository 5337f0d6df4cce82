"""
Analysis configuration.

All analysis-specific judgment calls (filtering thresholds, effect-size
cutoffs, which fitting strategies to run) live here instead of being
hard-coded in the pipeline stages.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional, Tuple


STRATEGIES = ('ql_glm', 'voom', 'voom_quality', 'deseq2')
NORM_METHODS = ('TMM', 'TMMwsp', 'RLE', 'upperquartile', 'median_ratio', 'none')
TREND_METHODS = ('locfit', 'loess', 'movingave', 'none')
DISPERSION_CHOICES = ('auto', 'trended', 'tagwise', 'common')


@dataclass
class FilterConfig:
    """Low-count filtering policy.

    Attributes:
        min_count: Minimum count a gene needs in a library of median size.
        min_total_count: Minimum total count across all samples.
        large_n: Group size above which the required number of samples is
            relaxed to ``large_n + (n - large_n) * min_prop``.
        min_prop: Proportion used for large groups.
        keep_lib_sizes: Keep the original library sizes after filtering.
        drop_unannotated: Remove genes with incomplete annotation.
    """

    min_count: float = 10
    min_total_count: float = 15
    large_n: int = 10
    min_prop: float = 0.7
    keep_lib_sizes: bool = True
    drop_unannotated: bool = True


@dataclass
class NormalizationConfig:
    method: str = 'TMM'
    log_ratio_trim: float = 0.3
    sum_trim: float = 0.05
    prior_count: float = 2.0


@dataclass
class DispersionConfig:
    """Negative binomial dispersion estimation.

    ``use`` selects which estimate feeds the quasi-likelihood fit; ``auto``
    leaves the choice to ``glm_ql_fit``. ``fit_type`` and ``n_cpus`` only
    apply to the ``deseq2`` strategy.
    """

    trend_method: str = 'locfit'
    use: str = 'auto'
    robust: bool = False
    fit_type: str = 'parametric'
    n_cpus: int = 1


@dataclass
class FitConfig:
    strategies: Tuple[str, ...] = ('ql_glm', 'voom', 'voom_quality')
    robust: bool = True
    lowess_span: float = 0.5
    quality_prior_n: float = 10.0


@dataclass
class TestingConfig:
    p_value: float = 0.05
    lfc: float = 0.0
    top_n: int = 20


@dataclass
class GeneSetConfig:
    nrot: int = 1999
    min_size: int = 3
    max_size: int = 500
    inter_gene_cor: float = 0.01
    gmt_files: List[str] = field(default_factory=list)
    kegg_pathways: List[str] = field(default_factory=list)


@dataclass
class AnalysisConfig:
    """Top-level configuration handed to every pipeline stage.

    Attributes:
        counts_path: Tab-separated count matrix.
        sample_sheet_path: Optional sample sheet (TSV/CSV) indexed by sample.
        annotation_path: Optional local annotation table (TSV).
        covariates: Sample-sheet columns combined into the ``group`` factor.
        block: Additional additive covariates (e.g. batch).
        contrasts: Mapping of contrast name to expression over group levels.
        species: Species for the annotation service.
        output_dir: Where the report is written.
    """

    counts_path: Optional[str] = None
    sample_sheet_path: Optional[str] = None
    annotation_path: Optional[str] = None
    covariates: List[str] = field(default_factory=lambda: ['group'])
    block: List[str] = field(default_factory=list)
    contrasts: Dict[str, str] = field(default_factory=dict)
    species: str = 'human'
    use_annotation_service: bool = False
    output_dir: str = 'report'
    filtering: FilterConfig = field(default_factory=FilterConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    dispersion: DispersionConfig = field(default_factory=DispersionConfig)
    fit: FitConfig = field(default_factory=FitConfig)
    testing: TestingConfig = field(default_factory=TestingConfig)
    gene_sets: GeneSetConfig = field(default_factory=GeneSetConfig)

    def __post_init__(self):
        """Validate configuration."""
        if self.normalization.method not in NORM_METHODS:
            raise ValueError(
                f"Unknown normalization method '{self.normalization.method}'. "
                f"Choose from: {', '.join(NORM_METHODS)}"
            )
        if self.dispersion.trend_method not in TREND_METHODS:
            raise ValueError(
                f"Unknown dispersion trend '{self.dispersion.trend_method}'. "
                f"Choose from: {', '.join(TREND_METHODS)}"
            )
        if self.dispersion.use not in DISPERSION_CHOICES:
            raise ValueError(
                f"Unknown dispersion choice '{self.dispersion.use}'. "
                f"Choose from: {', '.join(DISPERSION_CHOICES)}"
            )
        unknown = [s for s in self.fit.strategies if s not in STRATEGIES]
        if unknown:
            raise ValueError(f"Unknown fitting strategies: {unknown}")
        if not self.covariates:
            raise ValueError("At least one covariate is needed to define groups")
        if self.testing.lfc < 0:
            raise ValueError("lfc threshold must be non-negative")

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir)

    @classmethod
    def from_dict(cls, data: Dict) -> 'AnalysisConfig':
        """
        Build a configuration from a plain (e.g. JSON-loaded) dictionary.

        Nested sections are given as dictionaries under the keys
        ``filtering``, ``normalization``, ``dispersion``, ``fit``,
        ``testing`` and ``gene_sets``.
        """
        sections = {
            'filtering': FilterConfig,
            'normalization': NormalizationConfig,
            'dispersion': DispersionConfig,
            'fit': FitConfig,
            'testing': TestingConfig,
            'gene_sets': GeneSetConfig,
        }
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                raise ValueError(f"Unknown configuration key '{key}'")
            if key in sections and isinstance(value, dict):
                value = sections[key](**value)
            kwargs[key] = value

        if 'fit' in kwargs:
            kwargs['fit'].strategies = tuple(kwargs['fit'].strategies)

        return cls(**kwargs)


def configure_logging(level: int = logging.INFO):
    """Configure root logging for a report run."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
