"""
Bar plots for gene set results.
"""

from typing import Dict, Iterable

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from .theme import empty_figure, get_theme


def create_gene_set_barplot(
    results: pd.DataFrame,
    title: str = "Gene Set Tests",
    top_n: int = 20,
    fdr_threshold: float = 0.05,
    mixed: bool = False,
    dark_mode: bool = False
) -> go.Figure:
    """
    Horizontal bars of -log10 FDR for the top gene sets.

    Args:
        results: Rotation test table (Direction, PValue, FDR, FDR.Mixed)
            or competitive test table (PValue, FDR) indexed by set name
        title: Plot title
        top_n: Number of sets to show
        fdr_threshold: FDR line drawn on the plot
        mixed: Plot the mixed (non-directional) FDR
        dark_mode: Use dark theme

    Returns:
        Plotly Figure object
    """
    if results.empty:
        return empty_figure("No gene sets tested", dark_mode)

    fdr_col = 'FDR.Mixed' if mixed and 'FDR.Mixed' in results.columns else 'FDR'
    theme = get_theme(dark_mode)

    top = results.sort_values(fdr_col, kind='mergesort').head(top_n).iloc[::-1]
    score = -np.log10(top[fdr_col].clip(lower=1e-300))

    if 'Direction' in top.columns and not mixed:
        colors = [theme['up'] if d == 'Up' else theme['down'] for d in top['Direction']]
        direction = top['Direction'].tolist()
    else:
        colors = [theme['accent']] * len(top)
        direction = ['Mixed'] * len(top)

    fig = go.Figure(go.Bar(
        x=score,
        y=[str(name) for name in top.index],
        orientation='h',
        marker_color=colors,
        customdata=np.column_stack([top['NGenes'], direction, top[fdr_col]]),
        hovertemplate=(
            '<b>%{y}</b><br>'
            'Genes: %{customdata[0]}<br>'
            'Direction: %{customdata[1]}<br>'
            'FDR: %{customdata[2]:.3g}<br>'
            '<extra></extra>'
        )
    ))

    fig.add_vline(
        x=-np.log10(fdr_threshold),
        line_dash="dash",
        line_color="gray",
        opacity=0.7,
        annotation_text=f"FDR = {fdr_threshold}",
        annotation_position="top"
    )

    fig.update_layout(
        title=dict(text=f"<b>{title}</b>", font=dict(size=16, color=theme['font_color'])),
        xaxis=dict(
            title=dict(text=f"-log10({fdr_col})", font=dict(color=theme['font_color'])),
            tickfont=dict(color=theme['font_color']),
            gridcolor=theme['gridcolor']
        ),
        yaxis=dict(tickfont=dict(color=theme['font_color'], size=10)),
        paper_bgcolor=theme['paper_bgcolor'],
        plot_bgcolor=theme['plot_bgcolor'],
        font=dict(color=theme['font_color']),
        height=max(400, len(top) * 24 + 150),
        margin=dict(l=220, r=40, t=80, b=60)
    )
    return fig


def create_gene_set_members_barplot(
    tables: Dict[str, pd.DataFrame],
    members: Iterable[str],
    set_name: str,
    pvalue_threshold: float = 0.05,
    dark_mode: bool = False,
    max_genes: int = 30
) -> go.Figure:
    """
    Grouped bar plot of the log2FC of a set's genes, one bar per strategy.

    Args:
        tables: Dictionary of strategy name to TopTable
        members: Gene identifiers of the set
        set_name: Name of the gene set
        pvalue_threshold: Adjusted p-value for significance
        dark_mode: Use dark theme
        max_genes: Maximum genes to display

    Returns:
        Plotly Figure object
    """
    members = {str(m) for m in members}

    all_data = []
    for name, df in tables.items():
        subset = df[df['Gene'].isin(members)]
        for _, row in subset.iterrows():
            label = row['symbol'] if pd.notna(row.get('symbol')) else row['Gene']
            all_data.append({
                'Gene': label,
                'Strategy': name,
                'log2FC': row['log2FC'],
                'Significant': row['padj'] <= pvalue_threshold if pd.notna(row['padj']) else False
            })

    if not all_data:
        return empty_figure(f"No genes of {set_name} in the results", dark_mode)

    df_all = pd.DataFrame(all_data)

    gene_max_fc = df_all.groupby('Gene')['log2FC'].apply(lambda x: x.abs().max())
    if len(gene_max_fc) > max_genes:
        df_all = df_all[df_all['Gene'].isin(gene_max_fc.nlargest(max_genes).index)]

    theme = get_theme(dark_mode)
    palette = theme['palette']
    gene_order = df_all.groupby('Gene')['log2FC'].mean().sort_values(ascending=False).index.tolist()

    fig = go.Figure()
    for i, strategy in enumerate(tables):
        strategy_data = df_all[df_all['Strategy'] == strategy].set_index('Gene')['log2FC']
        fig.add_trace(go.Bar(
            name=strategy,
            x=gene_order,
            y=[strategy_data.get(gene, 0) for gene in gene_order],
            marker_color=palette[i % len(palette)],
            hovertemplate=(
                f'<b>{strategy}</b><br>'
                'Gene: %{x}<br>'
                'log2FC: %{y:.3f}<br>'
                '<extra></extra>'
            )
        ))

    fig.add_hline(y=0, line_color=theme['gridcolor'], line_width=1)

    sig_genes = df_all[df_all['Significant']]['Gene'].nunique()
    fig.update_layout(
        title=dict(
            text=(
                f"<b>{set_name}</b><br>"
                f"<sup>{df_all['Gene'].nunique()}/{len(members)} genes found | {sig_genes} significant</sup>"
            ),
            font=dict(size=16, color=theme['font_color'])
        ),
        xaxis=dict(title="Gene", tickfont=dict(color=theme['font_color'], size=9), tickangle=45),
        yaxis=dict(
            title=dict(text="log2(Fold Change)", font=dict(color=theme['font_color'])),
            tickfont=dict(color=theme['font_color']),
            gridcolor=theme['gridcolor']
        ),
        paper_bgcolor=theme['paper_bgcolor'],
        plot_bgcolor=theme['plot_bgcolor'],
        font=dict(color=theme['font_color']),
        barmode='group',
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
        height=500,
        margin=dict(l=60, r=40, t=100, b=120)
    )
    return fig
