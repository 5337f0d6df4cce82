"""
Fold change vs fold change scatter plot for comparing two fitting strategies.
"""

from typing import List, Optional

import pandas as pd
import plotly.graph_objects as go

from .theme import empty_figure, get_theme


def create_fc_scatter(
    merged: pd.DataFrame,
    strategy_a: str,
    strategy_b: str,
    highlight_genes: Optional[List[str]] = None,
    show_diagonal: bool = True,
    dark_mode: bool = False
) -> go.Figure:
    """
    Create a scatter plot comparing log2FC between two strategies.

    Args:
        merged: Output of ``StrategyComparison.get_concordance``
        strategy_a: Name of first strategy (x-axis)
        strategy_b: Name of second strategy (y-axis)
        highlight_genes: List of genes to highlight
        show_diagonal: Show y=x diagonal line
        dark_mode: Use dark theme

    Returns:
        Plotly Figure object
    """
    if merged.empty:
        return empty_figure("No overlapping genes found", dark_mode, height=500)

    theme = get_theme(dark_mode)
    font_color = theme['font_color']
    x_col, y_col = f'log2FC_{strategy_a}', f'log2FC_{strategy_b}'

    colors = {
        'Not significant': theme['ns'],
        'Up in both': theme['up'],
        'Down in both': theme['down'],
        'Discordant': theme['accent'],
        f'Sig in {strategy_a} only': '#9B59B6',
        f'Sig in {strategy_b} only': '#E67E22'
    }

    fig = go.Figure()

    for category in colors:
        subset = merged[merged['Concordance'] == category]
        if len(subset) == 0:
            continue

        fig.add_trace(go.Scatter(
            x=subset[x_col],
            y=subset[y_col],
            mode='markers',
            name=f'{category} ({len(subset)})',
            marker=dict(
                color=colors[category],
                size=6 if category == 'Not significant' else 8,
                opacity=0.5 if category == 'Not significant' else 0.8
            ),
            text=subset['Gene'],
            hovertemplate=(
                '<b>%{text}</b><br>'
                f'{strategy_a} log2FC: %{{x:.3f}}<br>'
                f'{strategy_b} log2FC: %{{y:.3f}}<br>'
                '<extra></extra>'
            )
        ))

    if highlight_genes:
        highlight_df = merged[merged['Gene'].str.upper().isin([g.upper() for g in highlight_genes])]
        if len(highlight_df) > 0:
            fig.add_trace(go.Scatter(
                x=highlight_df[x_col],
                y=highlight_df[y_col],
                mode='markers+text',
                name='Highlighted',
                marker=dict(color='#FFD700', size=14, symbol='star', line=dict(width=1, color='black')),
                text=highlight_df['Gene'],
                textposition='top center',
                textfont=dict(size=10, color=font_color),
            ))

    if show_diagonal:
        values = merged[[x_col, y_col]].abs().max().max()
        axis_range = float(values) * 1.1 if pd.notna(values) and values > 0 else 1.0

        fig.add_trace(go.Scatter(
            x=[-axis_range, axis_range],
            y=[-axis_range, axis_range],
            mode='lines',
            name='y = x',
            line=dict(color=theme['line'], dash='dash', width=1),
            hoverinfo='skip',
            showlegend=False
        ))

    fig.add_hline(y=0, line_color=theme['gridcolor'], line_width=1)
    fig.add_vline(x=0, line_color=theme['gridcolor'], line_width=1)

    valid_data = merged.dropna(subset=[x_col, y_col])
    if len(valid_data) > 2:
        corr_text = f"r = {valid_data[x_col].corr(valid_data[y_col]):.3f}"
    else:
        corr_text = ""

    up_both = (merged['Concordance'] == 'Up in both').sum()
    down_both = (merged['Concordance'] == 'Down in both').sum()
    discordant = (merged['Concordance'] == 'Discordant').sum()

    fig.update_layout(
        title=dict(
            text=(
                f"{strategy_a} vs {strategy_b}<br>"
                f"<sup>Up both: {up_both} | Down both: {down_both} | Discordant: {discordant} | {corr_text}</sup>"
            ),
            font=dict(size=16, color=font_color)
        ),
        xaxis=dict(
            title=dict(text=f"log2FC ({strategy_a})", font=dict(size=14, color=font_color)),
            tickfont=dict(color=font_color),
            gridcolor=theme['gridcolor'],
            zerolinecolor=theme['gridcolor']
        ),
        yaxis=dict(
            title=dict(text=f"log2FC ({strategy_b})", font=dict(size=14, color=font_color)),
            tickfont=dict(color=font_color),
            gridcolor=theme['gridcolor'],
            zerolinecolor=theme['gridcolor'],
            scaleanchor="x",
            scaleratio=1
        ),
        paper_bgcolor=theme['paper_bgcolor'],
        plot_bgcolor=theme['plot_bgcolor'],
        font=dict(color=font_color),
        legend=dict(
            orientation="v",
            yanchor="top",
            y=0.99,
            xanchor="left",
            x=1.02,
            font=dict(size=10, color=font_color)
        ),
        hovermode='closest',
        height=600,
        margin=dict(l=60, r=150, t=80, b=60)
    )

    return fig
