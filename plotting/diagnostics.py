"""
Model diagnostic plots: BCV, voom mean-variance trend, QL dispersions
and sample quality weights.
"""

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from core.dispersion import DispersionEstimates
from core.fitters import FitResult
from core.voom import VoomResult

from .theme import apply_layout, empty_figure, get_theme


def create_bcv_plot(dispersions: DispersionEstimates, dark_mode: bool = False) -> go.Figure:
    """
    Biological coefficient of variation against average log-CPM.

    Shows the tagwise estimates and the trend together with the common BCV.
    """
    theme = get_theme(dark_mode)
    table = dispersions.table.sort_values('AveLogCPM')
    x = table['AveLogCPM']

    fig = go.Figure()
    fig.add_trace(go.Scattergl(
        x=x,
        y=np.sqrt(table['tagwise']),
        mode='markers',
        name='Tagwise',
        marker=dict(color=theme['ns'], size=4),
        text=table.index.astype(str),
        hovertemplate='<b>%{text}</b><br>AveLogCPM: %{x:.2f}<br>BCV: %{y:.3f}<extra></extra>'
    ))
    fig.add_trace(go.Scatter(
        x=x,
        y=np.sqrt(table['trended']),
        mode='lines',
        name=f'Trend ({dispersions.trend_method})',
        line=dict(color=theme['up'], width=2)
    ))
    fig.add_hline(
        y=dispersions.bcv,
        line_dash="dash",
        line_color=theme['accent'],
        annotation_text=f"common BCV = {dispersions.bcv:.3f}",
        annotation_position="top right"
    )

    apply_layout(
        fig, theme,
        title="Biological coefficient of variation",
        x_title="Average log2-CPM",
        y_title="BCV",
    )
    return fig


def create_voom_trend_plot(v: VoomResult, title: str = "voom: Mean-variance trend",
                           dark_mode: bool = False) -> go.Figure:
    """sqrt(residual standard deviation) against average log2-count with the LOWESS curve."""
    theme = get_theme(dark_mode)

    fig = go.Figure()
    fig.add_trace(go.Scattergl(
        x=v.trend_x,
        y=v.trend_y,
        mode='markers',
        name='Genes',
        marker=dict(color=theme['ns'], size=4),
        text=v.E.index.astype(str),
        hovertemplate='<b>%{text}</b><br>log2 count: %{x:.2f}<br>sqrt(sd): %{y:.3f}<extra></extra>'
    ))
    fig.add_trace(go.Scatter(
        x=v.trend_line[:, 0],
        y=v.trend_line[:, 1],
        mode='lines',
        name='LOWESS',
        line=dict(color=theme['up'], width=2)
    ))

    apply_layout(
        fig, theme,
        title=title,
        x_title="log2(count size + 0.5)",
        y_title="sqrt(standard deviation)",
    )
    return fig


def create_ql_dispersion_plot(fit: FitResult, dark_mode: bool = False) -> go.Figure:
    """
    Quarter-root quasi-likelihood dispersions before and after squeezing.

    Args:
        fit: Result of the ``ql_glm`` strategy
        dark_mode: Use dark theme

    Returns:
        Plotly Figure object
    """
    if fit.strategy != 'ql_glm':
        return empty_figure("QL dispersions are only available for ql_glm", dark_mode)

    theme = get_theme(dark_mode)
    order = np.argsort(fit.ave_expr)
    x = fit.ave_expr[order]

    fig = go.Figure()
    fig.add_trace(go.Scattergl(
        x=x,
        y=np.sqrt(np.sqrt(fit.s2[order])),
        mode='markers',
        name='Raw',
        marker=dict(color=theme['ns'], size=4),
        text=fit.genes[order].astype(str),
        hovertemplate='<b>%{text}</b><br>AveLogCPM: %{x:.2f}<br>%{y:.3f}<extra></extra>'
    ))
    fig.add_trace(go.Scattergl(
        x=x,
        y=np.sqrt(np.sqrt(fit.s2_post[order])),
        mode='markers',
        name='Squeezed',
        marker=dict(color=theme['down'], size=3, opacity=0.7),
        hoverinfo='skip'
    ))
    fig.add_trace(go.Scatter(
        x=x,
        y=np.sqrt(np.sqrt(fit.s2_prior[order])),
        mode='lines',
        name='Trend',
        line=dict(color=theme['up'], width=2)
    ))

    df_prior = float(np.median(np.atleast_1d(fit.df_prior)))
    apply_layout(
        fig, theme,
        title=f"Quasi-likelihood dispersion<br><sup>prior df {df_prior:.1f}</sup>",
        x_title="Average log2-CPM",
        y_title="Quarter-root mean deviance",
    )
    return fig


def create_sample_weights_plot(sample_weights: pd.Series, samples: pd.DataFrame = None,
                               dark_mode: bool = False) -> go.Figure:
    """Bar plot of sample quality weights with the unit reference line."""
    theme = get_theme(dark_mode)
    palette = theme['palette']

    if samples is not None and 'group' in samples.columns:
        groups = samples.loc[sample_weights.index, 'group']
        levels = sorted(groups.unique())
        colors = [palette[levels.index(g) % len(palette)] for g in groups]
    else:
        groups = pd.Series('', index=sample_weights.index)
        colors = palette[0]

    fig = go.Figure(go.Bar(
        x=[str(s) for s in sample_weights.index],
        y=sample_weights.values,
        marker_color=colors,
        customdata=groups.values,
        hovertemplate='<b>%{x}</b> (%{customdata})<br>weight: %{y:.3f}<extra></extra>'
    ))
    fig.add_hline(y=1.0, line_dash="dash", line_color="gray", opacity=0.7)

    apply_layout(fig, theme, title="Sample quality weights", x_title="Sample", y_title="Weight")
    fig.update_layout(xaxis=dict(tickangle=45))
    return fig
