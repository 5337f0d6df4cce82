"""
Volcano and mean-difference plots of a TopTable.
"""

import math
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots

from .theme import apply_layout, empty_figure, get_theme


def _classify(df: pd.DataFrame, pval_col: str, log2fc_threshold: float, pvalue_threshold: float):
    pval = df[pval_col].fillna(1.0)
    up_mask = (df['log2FC'] >= log2fc_threshold) & (df['log2FC'] > 0) & (pval <= pvalue_threshold)
    down_mask = (df['log2FC'] <= -log2fc_threshold) & (df['log2FC'] < 0) & (pval <= pvalue_threshold)

    significance = pd.Series('Not Significant', index=df.index)
    significance[up_mask] = 'Upregulated'
    significance[down_mask] = 'Downregulated'
    return significance, up_mask, down_mask


def _labels(df: pd.DataFrame) -> pd.Series:
    """Gene symbol where annotated, otherwise the identifier."""
    if 'symbol' in df.columns:
        return df['symbol'].fillna(df['Gene']).astype(str)
    return df['Gene'].astype(str)


def _scatter_with_labels(
    df: pd.DataFrame,
    x_col: str,
    y_col: str,
    y_label: str,
    theme: dict,
    highlight_genes: Optional[List[str]],
    show_labels: bool,
    top_n_labels: int
) -> go.Figure:
    colors = {
        'Not Significant': theme['ns'],
        'Upregulated': theme['up'],
        'Downregulated': theme['down'],
    }
    hover = (
        '<b>%{text}</b><br>'
        f'{x_col}: %{{x:.3f}}<br>'
        f'{y_label}: %{{y:.3f}}<br>'
        '<extra></extra>'
    )

    fig = go.Figure()
    for sig_type in ['Not Significant', 'Downregulated', 'Upregulated']:
        subset = df[df['Significance'] == sig_type]
        fig.add_trace(go.Scatter(
            x=subset[x_col],
            y=subset[y_col],
            mode='markers',
            name=sig_type,
            marker=dict(
                color=colors[sig_type],
                size=6 if sig_type == 'Not Significant' else 8,
                opacity=0.7 if sig_type == 'Not Significant' else 0.9,
                line=dict(width=0)
            ),
            text=subset['Label'],
            hovertemplate=hover
        ))

    if highlight_genes:
        wanted = {g.upper().strip() for g in highlight_genes}
        highlight_df = df[
            df['Label'].str.upper().isin(wanted) | df['Gene'].str.upper().isin(wanted)
        ]
        if len(highlight_df) > 0:
            fig.add_trace(go.Scatter(
                x=highlight_df[x_col],
                y=highlight_df[y_col],
                mode='markers+text',
                name='Highlighted',
                marker=dict(color='#FFD700', size=12, symbol='star', line=dict(width=1, color='black')),
                text=highlight_df['Label'],
                textposition='top center',
                textfont=dict(size=10, color=theme['font_color']),
                hovertemplate=hover
            ))

    if show_labels and top_n_labels > 0:
        sig_df = df[df['Significance'] != 'Not Significant']
        if len(sig_df) > 0:
            top_genes = sig_df.nsmallest(top_n_labels, 'rank_p')
            fig.add_trace(go.Scatter(
                x=top_genes[x_col],
                y=top_genes[y_col],
                mode='text',
                text=top_genes['Label'],
                textposition='top center',
                textfont=dict(size=9, color=theme['font_color']),
                showlegend=False,
                hoverinfo='skip'
            ))

    return fig


def create_volcano_plot(
    df: pd.DataFrame,
    title: str = "Volcano Plot",
    log2fc_threshold: float = 0.0,
    pvalue_threshold: float = 0.05,
    use_padj: bool = True,
    highlight_genes: Optional[List[str]] = None,
    dark_mode: bool = False,
    show_labels: bool = True,
    top_n_labels: int = 10
) -> go.Figure:
    """
    Create an interactive volcano plot.

    Args:
        df: TopTable with Gene, log2FC, pvalue, padj (and optionally symbol)
        title: Plot title
        log2fc_threshold: Threshold for fold change significance
        pvalue_threshold: Threshold for p-value significance
        use_padj: Use adjusted p-value for significance
        highlight_genes: List of genes to highlight
        dark_mode: Use dark theme
        show_labels: Show gene labels for top genes
        top_n_labels: Number of top genes to label

    Returns:
        Plotly Figure object
    """
    if df.empty:
        return empty_figure("No results to plot", dark_mode)

    df = df.copy()
    pval_col = 'padj' if use_padj else 'pvalue'
    theme = get_theme(dark_mode)

    df['neg_log10_pval'] = -np.log10(df['pvalue'].fillna(1.0).clip(lower=1e-300))
    df['rank_p'] = df['pvalue'].fillna(1.0)
    df['Label'] = _labels(df)
    df['Significance'], up_mask, down_mask = _classify(df, pval_col, log2fc_threshold, pvalue_threshold)

    fig = _scatter_with_labels(
        df, 'log2FC', 'neg_log10_pval', '-log10(p-value)', theme,
        highlight_genes, show_labels, top_n_labels
    )

    if log2fc_threshold > 0:
        for x in (log2fc_threshold, -log2fc_threshold):
            fig.add_vline(x=x, line_dash="dash", line_color="gray", opacity=0.7)

    apply_layout(
        fig, theme,
        title=f"{title}<br><sup>{up_mask.sum()} upregulated | {down_mask.sum()} downregulated</sup>",
        x_title="log2(Fold Change)",
        y_title="-log10(p-value)",
        height=550
    )
    fig.update_layout(legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1))
    return fig


def create_md_plot(
    df: pd.DataFrame,
    title: str = "Mean-Difference Plot",
    log2fc_threshold: float = 0.0,
    pvalue_threshold: float = 0.05,
    use_padj: bool = True,
    highlight_genes: Optional[List[str]] = None,
    dark_mode: bool = False,
    show_labels: bool = True,
    top_n_labels: int = 10
) -> go.Figure:
    """
    Plot log2 fold change against average log2 expression.

    Args:
        df: TopTable with Gene, log2FC, AveExpr, pvalue, padj

    Returns:
        Plotly Figure object
    """
    if df.empty:
        return empty_figure("No results to plot", dark_mode)

    df = df.copy()
    pval_col = 'padj' if use_padj else 'pvalue'
    theme = get_theme(dark_mode)

    df['rank_p'] = df['pvalue'].fillna(1.0)
    df['Label'] = _labels(df)
    df['Significance'], up_mask, down_mask = _classify(df, pval_col, log2fc_threshold, pvalue_threshold)

    fig = _scatter_with_labels(
        df, 'AveExpr', 'log2FC', 'log2FC', theme,
        highlight_genes, show_labels, top_n_labels
    )
    fig.add_hline(y=0, line_color=theme['line'], line_width=1)

    apply_layout(
        fig, theme,
        title=f"{title}<br><sup>{up_mask.sum()} upregulated | {down_mask.sum()} downregulated</sup>",
        x_title="Average log2 expression",
        y_title="log2(Fold Change)",
        height=550
    )
    return fig


def create_multi_volcano(
    tables: Dict[str, pd.DataFrame],
    log2fc_threshold: float = 0.0,
    pvalue_threshold: float = 0.05,
    use_padj: bool = True,
    dark_mode: bool = False,
    cols: int = 2
) -> go.Figure:
    """
    Create a grid of volcano plots, one per result table.

    Args:
        tables: Dictionary of name (e.g. strategy) to TopTable
        cols: Number of columns in grid

    Returns:
        Plotly Figure with subplots
    """
    if not tables:
        return empty_figure("No results to plot", dark_mode)

    rows = math.ceil(len(tables) / cols)
    theme = get_theme(dark_mode)
    pval_col = 'padj' if use_padj else 'pvalue'

    fig = make_subplots(
        rows=rows,
        cols=cols,
        subplot_titles=list(tables.keys()),
        horizontal_spacing=0.08,
        vertical_spacing=0.12
    )

    for idx, (name, df) in enumerate(tables.items()):
        row = idx // cols + 1
        col = idx % cols + 1

        df = df.copy()
        df['neg_log10_pval'] = -np.log10(df['pvalue'].fillna(1.0).clip(lower=1e-300))
        _, up_mask, down_mask = _classify(df, pval_col, log2fc_threshold, pvalue_threshold)
        ns_mask = ~up_mask & ~down_mask

        for mask, color in [(ns_mask, theme['ns']), (down_mask, theme['down']), (up_mask, theme['up'])]:
            subset = df[mask]
            fig.add_trace(
                go.Scatter(
                    x=subset['log2FC'],
                    y=subset['neg_log10_pval'],
                    mode='markers',
                    marker=dict(color=color, size=4, opacity=0.7),
                    text=_labels(subset),
                    hovertemplate='<b>%{text}</b><br>log2FC: %{x:.2f}<extra></extra>',
                ),
                row=row,
                col=col
            )

    fig.update_layout(
        paper_bgcolor=theme['paper_bgcolor'],
        plot_bgcolor=theme['plot_bgcolor'],
        height=300 * rows,
        showlegend=False,
        margin=dict(l=50, r=30, t=50, b=50)
    )
    return fig
