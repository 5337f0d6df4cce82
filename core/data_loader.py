"""
Data loading module for count matrices and sample sheets.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .count_matrix import CountMatrix
from .errors import CountMatrixError

logger = logging.getLogger(__name__)

# Gene level columns commonly shipped next to the counts (featureCounts, GEO)
GENE_INFO_COLUMNS = [
    'length', 'chr', 'start', 'end', 'strand', 'symbol',
    'genename', 'gene_name', 'description', 'biotype'
]

CONTROL_NAMES = ['ctrl', 'control', 'con', 'ctl', 'wt', 'wildtype', 'wild-type', 'untreated', 'vehicle']


class DataLoader:
    """Handles loading of count matrices and sample sheets."""

    def __init__(self, gene_info_columns: Optional[Sequence[str]] = None):
        self.gene_info_columns = [
            c.lower() for c in (gene_info_columns or GENE_INFO_COLUMNS)
        ]
        self.file_path: Optional[Path] = None

    def load_counts(self, file_path: str):
        """
        Load a tab-separated count file.

        The first column holds gene identifiers, the header holds sample
        names and every remaining column holds integer counts. Known gene
        level columns (e.g. ``Length``) are split off.

        Args:
            file_path: Path to the count file

        Returns:
            Tuple of (counts DataFrame genes x samples, gene info DataFrame)
        """
        self.file_path = Path(file_path)

        with open(self.file_path) as handle:
            header = handle.readline().rstrip('\r\n').split('\t')

        try:
            df = pd.read_csv(self.file_path, sep='\t', index_col=0)
        except pd.errors.ParserError as e:
            raise CountMatrixError(f"Malformed count file {self.file_path}: {e}")

        return self.parse_counts(df, header=header[1:])

    def load_counts_from_buffer(self, uploaded_file):
        """
        Load counts from a Streamlit UploadedFile buffer.

        Args:
            uploaded_file: Streamlit UploadedFile object

        Returns:
            Tuple of (counts, gene info)
        """
        try:
            df = pd.read_csv(uploaded_file, sep='\t', index_col=0)
        except pd.errors.ParserError as e:
            raise CountMatrixError(f"Malformed count file {uploaded_file.name}: {e}")
        return self.parse_counts(df)

    def parse_counts(self, df: pd.DataFrame, header: Optional[List[str]] = None):
        """
        Split a raw table into integer counts and gene level columns.

        Args:
            df: Table indexed by gene identifier
            header: Raw header names, used to detect duplicated samples

        Returns:
            Tuple of (counts, gene info)
        """
        if header is not None and len(set(header)) != len(header):
            dups = sorted({h for h in header if header.count(h) > 1})
            raise CountMatrixError(f"Duplicated column names in header: {dups}")

        df.index = df.index.astype(str).str.strip()
        df.index.name = 'GeneID'

        info_cols = [
            col for col in df.columns
            if col.lower() in self.gene_info_columns or not pd.api.types.is_numeric_dtype(df[col])
        ]
        unexpected = [
            col for col in info_cols
            if col.lower() not in self.gene_info_columns
        ]
        if unexpected:
            raise CountMatrixError(
                f"Non-numeric values in sample columns: {unexpected[:5]}"
            )

        gene_info = df[info_cols].copy()
        counts = df.drop(columns=info_cols)

        if counts.shape[1] == 0:
            raise CountMatrixError("No sample columns found in count file")

        if counts.isna().any().any():
            bad_rows = counts.index[counts.isna().any(axis=1)].tolist()
            raise CountMatrixError(
                f"Missing values (row/column mismatch) for genes: {bad_rows[:5]}"
            )

        values = counts.values.astype(float)
        if (values < 0).any():
            raise CountMatrixError("Counts must be non-negative")
        if not np.all(values == np.round(values)):
            raise CountMatrixError("Counts must be integers")

        counts = counts.astype(np.int64)
        logger.info("Loaded %d genes x %d samples", counts.shape[0], counts.shape[1])

        return counts, gene_info

    def load_sample_sheet(self, file_path: str) -> pd.DataFrame:
        """
        Load a sample sheet indexed by sample name.

        Args:
            file_path: Path to TSV, CSV or Excel file

        Returns:
            DataFrame of categorical covariates
        """
        path = Path(file_path)
        return self._read_sample_sheet(path, path.suffix.lower())

    def load_sample_sheet_from_buffer(self, uploaded_file) -> pd.DataFrame:
        """Load a sample sheet from a Streamlit UploadedFile buffer."""
        return self._read_sample_sheet(uploaded_file, Path(uploaded_file.name).suffix.lower())

    @staticmethod
    def _read_sample_sheet(source, suffix: str) -> pd.DataFrame:
        if suffix in ['.xlsx', '.xls']:
            df = pd.read_excel(source, index_col=0, dtype=str)
        elif suffix == '.csv':
            df = pd.read_csv(source, index_col=0, dtype=str)
        elif suffix in ['.tsv', '.txt']:
            df = pd.read_csv(source, sep='\t', index_col=0, dtype=str)
        else:
            raise ValueError(f"Unsupported file format: {suffix}")

        df.index = df.index.astype(str).str.strip()
        return df

    def infer_sample_sheet(self, sample_names: List[str]) -> pd.DataFrame:
        """
        Build sample metadata from sample name patterns.

        Args:
            sample_names: Column names of the count matrix

        Returns:
            DataFrame with a single ``group`` column
        """
        groups = detect_sample_groups(sample_names)
        labels = {}
        for group, members in groups.items():
            for sample in members:
                labels[sample] = group

        return pd.DataFrame(
            {'group': [labels[s] for s in sample_names]},
            index=pd.Index(sample_names, name='sample')
        )


def detect_sample_groups(columns: List[str]) -> Dict[str, List[str]]:
    """
    Auto-detect sample groups from column names.

    Looks for patterns like:
    - ctrl, ctrl.1, ctrl.2 or control, control_1
    - KD1, KD1.1, KD1.2 or treatment, treatment_1
    - WT, WT_1, WT_2 or wt_rep1, wt_rep2

    Args:
        columns: List of column names

    Returns:
        Dictionary mapping group names to list of columns
    """
    groups = {}

    for col in columns:
        col_clean = col.strip()

        # Only strip a trailing [separator][number] or [separator]rep[number],
        # so "KD1" stays "KD1" but "KD1.1" becomes "KD1"
        base_name = re.sub(r'[\s._-]+(rep)?\d+$', '', col_clean, flags=re.IGNORECASE)
        base_name = base_name.rstrip()

        if not base_name:
            base_name = col_clean

        if base_name.lower() in CONTROL_NAMES:
            base_name = 'Control'

        groups.setdefault(base_name, []).append(col)

    return groups


def make_group_label(values: Sequence[str]) -> str:
    """Join covariate levels into an identifier-safe group label."""
    label = '_'.join(str(v).strip() for v in values)
    label = re.sub(r'\W+', '_', label).strip('_')
    if not label or label[0].isdigit():
        label = f'g{label}'
    return label


def build_count_matrix(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    covariates: Sequence[str] = ('group',),
    gene_info: Optional[pd.DataFrame] = None
) -> CountMatrix:
    """
    Validate and align counts with sample metadata.

    Args:
        counts: Genes x samples integer counts
        metadata: Sample metadata indexed by sample name
        covariates: Metadata columns whose level combination defines the group
        gene_info: Optional gene level data indexed like ``counts``

    Returns:
        CountMatrix with a ``group`` column in its sample metadata

    Raises:
        CountMatrixError: If samples and metadata rows do not correspond
    """
    if len(metadata) != counts.shape[1]:
        raise CountMatrixError(
            f"Count matrix has {counts.shape[1]} samples but metadata has "
            f"{len(metadata)} rows"
        )
    if not metadata.index.is_unique:
        raise CountMatrixError("Duplicated sample names in metadata")

    missing = [s for s in counts.columns if s not in metadata.index]
    if missing:
        raise CountMatrixError(f"Samples without metadata: {missing[:5]}")

    metadata = metadata.loc[list(counts.columns)].copy()

    absent = [c for c in covariates if c not in metadata.columns]
    if absent:
        raise CountMatrixError(f"Covariates not in sample metadata: {absent}")
    if metadata[list(covariates)].isna().any().any():
        raise CountMatrixError("Missing covariate values in sample metadata")

    metadata['group'] = [
        make_group_label(row) for row in metadata[list(covariates)].itertuples(index=False)
    ]

    if gene_info is None:
        gene_info = pd.DataFrame(index=counts.index)

    return CountMatrix(
        counts=counts,
        samples=metadata,
        genes=gene_info.reindex(counts.index)
    )
