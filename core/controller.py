"""
Controller module for running the report behind the Streamlit page.
This module separates the analysis from the UI and implements caching.
"""

import json
import logging
from typing import Dict, Optional, Tuple

import pandas as pd
import streamlit as st

from core.config import AnalysisConfig
from core.data_loader import DataLoader
from core.pipeline import AnalysisContext, ReportPipeline

logger = logging.getLogger(__name__)


# We use st.cache_resource for objects that should persist across reruns
@st.cache_resource
def get_data_loader():
    return DataLoader()


@st.cache_data(show_spinner=False)
def load_uploaded_counts(uploaded_file) -> Tuple[Optional[pd.DataFrame], Optional[pd.DataFrame], Optional[str]]:
    """
    Parse an uploaded count file.
    Returns (counts, gene_info, error_message).
    """
    try:
        counts, gene_info = get_data_loader().load_counts_from_buffer(uploaded_file)
        return counts, gene_info, None
    except ValueError as e:
        return None, None, str(e)


@st.cache_data(show_spinner=False)
def load_uploaded_sample_sheet(uploaded_file) -> Tuple[Optional[pd.DataFrame], Optional[str]]:
    """Returns (sample sheet, error_message)."""
    try:
        return get_data_loader().load_sample_sheet_from_buffer(uploaded_file), None
    except ValueError as e:
        return None, str(e)


@st.cache_data(show_spinner=False)
def infer_samples(sample_names: Tuple[str, ...]) -> pd.DataFrame:
    return get_data_loader().infer_sample_sheet(list(sample_names))


# Contexts hold PyDESeq2 objects and figures, so they are cached as resources
@st.cache_resource(show_spinner=False)
def run_analysis(
    counts: pd.DataFrame,
    samples: pd.DataFrame,
    config_json: str,
    dark_mode: bool = False
) -> Tuple[Optional[AnalysisContext], Optional[str]]:
    """
    Run the full report for the given tables.

    The configuration is passed as JSON so that it can be hashed.
    Returns (context, error_message).
    """
    config = AnalysisConfig.from_dict(json.loads(config_json))
    pipeline = ReportPipeline(config)
    try:
        ctx = pipeline.run(counts=counts, samples=samples, figures=False)
        pipeline.build_figures(ctx, dark_mode=dark_mode)
    except ValueError as e:
        logger.warning("Analysis failed: %s", e)
        return None, str(e)
    return ctx, None


def decision_summary(ctx: AnalysisContext) -> pd.DataFrame:
    return ReportPipeline(ctx.config).decisions(ctx)


def flat_tables(ctx: AnalysisContext) -> Dict[str, pd.DataFrame]:
    """TopTables keyed ``contrast/strategy``."""
    return {
        f'{contrast}/{strategy}': table
        for contrast, by_strategy in ctx.tables.items()
        for strategy, table in by_strategy.items()
    }
