"""
Sample-level quality plots: log-CPM distributions and MDS.
"""

from typing import Optional

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from .theme import apply_layout, get_theme


def _group_colors(samples: Optional[pd.DataFrame], columns, theme: dict) -> dict:
    if samples is None or 'group' not in samples.columns:
        return {s: theme['palette'][0] for s in columns}
    levels = sorted(samples['group'].unique())
    palette = theme['palette']
    level_color = {level: palette[i % len(palette)] for i, level in enumerate(levels)}
    return {s: level_color[samples.loc[s, 'group']] for s in columns}


def create_logcpm_boxplot(
    log_cpm: pd.DataFrame,
    samples: Optional[pd.DataFrame] = None,
    title: str = "log2-CPM per sample",
    dark_mode: bool = False
) -> go.Figure:
    """
    Box plot of log2-CPM values for each sample, colored by group.

    Args:
        log_cpm: Genes x samples log2-CPM
        samples: Sample metadata with a ``group`` column
        title: Plot title
        dark_mode: Use dark theme

    Returns:
        Plotly Figure object
    """
    theme = get_theme(dark_mode)
    colors = _group_colors(samples, log_cpm.columns, theme)

    fig = go.Figure()
    for sample in log_cpm.columns:
        group = samples.loc[sample, 'group'] if samples is not None else ''
        fig.add_trace(go.Box(
            y=log_cpm[sample].values,
            name=str(sample),
            marker_color=colors[sample],
            boxpoints=False,
            legendgroup=str(group),
            hovertemplate=f'<b>{sample}</b> ({group})<br>%{{y:.2f}}<extra></extra>'
        ))

    median = float(np.median(log_cpm.values))
    fig.add_hline(y=median, line_dash="dash", line_color="gray", opacity=0.7)

    apply_layout(fig, theme, title=title, x_title="Sample", y_title="log2-CPM", height=500)
    fig.update_layout(showlegend=False, xaxis=dict(tickangle=45))
    return fig


def mds_coordinates(log_cpm: pd.DataFrame, top: int = 500, dims: int = 2):
    """
    Classical multidimensional scaling on leading log-fold-change distances.

    The distance between two samples is the root mean square of the
    ``top`` largest absolute log2 differences between them.

    Args:
        log_cpm: Genes x samples log2-CPM
        top: Number of genes used for each pairwise distance
        dims: Number of dimensions to return

    Returns:
        Tuple (coordinates DataFrame indexed by sample, proportion of
        variance explained per dimension)
    """
    values = log_cpm.values.astype(float)
    n_genes, n_samples = values.shape
    if n_samples < 3:
        raise ValueError("At least 3 samples are needed for an MDS plot")
    top = min(top, n_genes)

    distance = np.zeros((n_samples, n_samples))
    for i in range(n_samples):
        for j in range(i + 1, n_samples):
            sq = (values[:, i] - values[:, j]) ** 2
            leading = np.partition(sq, n_genes - top)[n_genes - top:]
            distance[i, j] = distance[j, i] = np.sqrt(np.mean(leading))

    centering = np.eye(n_samples) - np.ones((n_samples, n_samples)) / n_samples
    b = -0.5 * centering @ (distance ** 2) @ centering
    eigenvalues, eigenvectors = np.linalg.eigh(b)
    order = np.argsort(eigenvalues)[::-1]
    eigenvalues, eigenvectors = eigenvalues[order], eigenvectors[:, order]

    dims = min(dims, n_samples - 1)
    positive = np.clip(eigenvalues, 0, None)
    coords = eigenvectors[:, :dims] * np.sqrt(positive[:dims])
    explained = positive[:dims] / positive.sum() if positive.sum() > 0 else np.zeros(dims)

    columns = [f'Dim{k + 1}' for k in range(dims)]
    return pd.DataFrame(coords, index=log_cpm.columns, columns=columns), explained


def create_mds_plot(
    log_cpm: pd.DataFrame,
    samples: Optional[pd.DataFrame] = None,
    top: int = 500,
    title: str = "MDS plot",
    dark_mode: bool = False
) -> go.Figure:
    """
    Two-dimensional MDS plot of samples, colored by group.

    Args:
        log_cpm: Genes x samples log2-CPM
        samples: Sample metadata with a ``group`` column
        top: Number of genes used for each pairwise distance
        title: Plot title
        dark_mode: Use dark theme

    Returns:
        Plotly Figure object
    """
    theme = get_theme(dark_mode)
    coords, explained = mds_coordinates(log_cpm, top=top, dims=2)

    if samples is not None and 'group' in samples.columns:
        groups = samples.loc[coords.index, 'group']
    else:
        groups = pd.Series('all', index=coords.index)

    fig = go.Figure()
    for i, level in enumerate(sorted(groups.unique())):
        subset = coords[groups == level]
        fig.add_trace(go.Scatter(
            x=subset['Dim1'],
            y=subset['Dim2'],
            mode='markers+text',
            name=str(level),
            text=[str(s) for s in subset.index],
            textposition='top center',
            marker=dict(size=12, color=theme['palette'][i % len(theme['palette'])]),
            hovertemplate='<b>%{text}</b><br>Dim1: %{x:.2f}<br>Dim2: %{y:.2f}<extra></extra>'
        ))

    apply_layout(
        fig, theme,
        title=f"{title}<br><sup>distances from the top {top} genes per pair</sup>",
        x_title=f"Leading logFC dim 1 ({explained[0]:.0%})",
        y_title=f"Leading logFC dim 2 ({explained[1]:.0%})",
        height=550
    )
    return fig
