"""
Heatmap of top differentially expressed genes.
"""

import logging
from typing import List, Optional

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from scipy.cluster import hierarchy
from scipy.spatial.distance import pdist

from .theme import empty_figure, get_theme

logger = logging.getLogger(__name__)


def create_heatmap(
    log_cpm: pd.DataFrame,
    genes: List[str],
    samples: Optional[pd.DataFrame] = None,
    labels: Optional[pd.Series] = None,
    cluster_genes: bool = True,
    cluster_samples: bool = True,
    dark_mode: bool = False,
    title: str = "Top DE Genes"
) -> go.Figure:
    """
    Create a heatmap of z-scored log-CPM values.

    Args:
        log_cpm: Genes x samples log2-CPM
        genes: Genes to show (e.g. the top of a TopTable)
        samples: Sample metadata with a ``group`` column for the axis labels
        labels: Display name per gene (e.g. symbols)
        cluster_genes: Hierarchically cluster genes
        cluster_samples: Hierarchically cluster samples
        dark_mode: Use dark theme
        title: Plot title

    Returns:
        Plotly Figure object
    """
    genes = [g for g in genes if g in log_cpm.index]
    if not genes:
        return empty_figure("No genes to display", dark_mode)

    original = log_cpm.loc[genes]
    matrix = _normalize_rows(original)

    if cluster_genes and len(matrix) > 2:
        order = _get_cluster_order(matrix, axis=0)
        matrix = matrix.iloc[order]
        original = original.iloc[order]

    if cluster_samples and len(matrix.columns) > 2:
        order = _get_cluster_order(matrix, axis=1)
        matrix = matrix.iloc[:, order]
        original = original.iloc[:, order]

    if labels is not None:
        y_labels = [
            str(labels.get(g)) if pd.notna(labels.get(g)) else str(g)
            for g in matrix.index
        ]
    else:
        y_labels = [str(g) for g in matrix.index]

    if samples is not None and 'group' in samples.columns:
        x_labels = [f"{s} ({samples.loc[s, 'group']})" for s in matrix.columns]
    else:
        x_labels = [str(s) for s in matrix.columns]

    theme = get_theme(dark_mode)
    colorscale = [
        [0, theme['down']],
        [0.5, theme['plot_bgcolor']],
        [1, theme['up']]
    ]

    hover_text = [
        [
            f"<b>{y_labels[i]}</b><br>Sample: {matrix.columns[j]}<br>"
            f"log2CPM: {original.iloc[i, j]:.2f}<br>Z-score: {matrix.iloc[i, j]:.2f}"
            for j in range(matrix.shape[1])
        ]
        for i in range(matrix.shape[0])
    ]

    fig = go.Figure(data=go.Heatmap(
        z=matrix.values,
        x=x_labels,
        y=y_labels,
        colorscale=colorscale,
        zmin=-3,
        zmax=3,
        colorbar=dict(
            title=dict(text="Z-score", font=dict(color=theme['font_color'])),
            tickfont=dict(color=theme['font_color'])
        ),
        hovertemplate='%{customdata}<extra></extra>',
        customdata=hover_text,
    ))

    fig.update_layout(
        title=dict(
            text=f"<b>{title}</b> ({len(matrix)} genes × {len(matrix.columns)} samples)",
            font=dict(size=16, color=theme['font_color']),
            x=0.5,
            xanchor='center'
        ),
        xaxis=dict(
            title=dict(text="Sample", font=dict(color=theme['font_color'])),
            tickfont=dict(color=theme['font_color'], size=10),
            tickangle=45
        ),
        yaxis=dict(
            title=dict(text="Gene", font=dict(color=theme['font_color'])),
            tickfont=dict(color=theme['font_color'], size=9),
            autorange="reversed"
        ),
        paper_bgcolor=theme['paper_bgcolor'],
        plot_bgcolor=theme['plot_bgcolor'],
        font=dict(color=theme['font_color']),
        height=max(400, len(matrix) * 18 + 150),
        margin=dict(l=120, r=80, t=100, b=120)
    )

    return fig


def _normalize_rows(matrix: pd.DataFrame) -> pd.DataFrame:
    """Z-score each row; constant rows become zero."""
    values = matrix.values.astype(float)
    mean = values.mean(axis=1, keepdims=True)
    std = values.std(axis=1, ddof=1, keepdims=True)
    std[~(std > 0)] = 1.0
    return pd.DataFrame((values - mean) / std, index=matrix.index, columns=matrix.columns)


def _get_cluster_order(matrix: pd.DataFrame, axis: int = 0) -> List[int]:
    """Get hierarchical clustering order for rows (axis=0) or columns (axis=1)."""
    values = matrix.fillna(0).values
    if axis == 1:
        values = values.T

    if len(values) < 2:
        return list(range(len(values)))

    distances = pdist(values, metric='euclidean')
    if not np.all(np.isfinite(distances)):
        logger.warning("Non-finite distances; clustering skipped")
        return list(range(len(values)))

    linkage = hierarchy.linkage(distances, method='average')
    return list(hierarchy.leaves_list(linkage))
