"""
Shared light/dark styling for report figures.
"""

import plotly.graph_objects as go


def get_theme(dark_mode: bool = False) -> dict:
    """Colors and backgrounds for the light or dark report theme."""
    if dark_mode:
        return {
            'template': 'plotly_dark',
            'paper_bgcolor': '#1E1E1E',
            'plot_bgcolor': '#2D2D2D',
            'font_color': '#FFFFFF',
            'gridcolor': '#404040',
            'ns': 'rgba(128, 128, 128, 0.4)',
            'up': '#FF6B6B',
            'down': '#4ECDC4',
            'accent': '#FFD93D',
            'line': 'rgba(255, 255, 255, 0.6)',
            'palette': ['#FF6B6B', '#4ECDC4', '#FFD93D', '#9B59B6', '#E67E22', '#2ECC71'],
        }
    return {
        'template': 'plotly_white',
        'paper_bgcolor': '#FFFFFF',
        'plot_bgcolor': '#FAFAFA',
        'font_color': '#2C3E50',
        'gridcolor': '#E0E0E0',
        'ns': 'rgba(180, 180, 180, 0.5)',
        'up': '#E74C3C',
        'down': '#3498DB',
        'accent': '#F39C12',
        'line': 'rgba(0, 0, 0, 0.6)',
        'palette': ['#E74C3C', '#3498DB', '#F39C12', '#9B59B6', '#E67E22', '#27AE60'],
    }


def apply_layout(
    fig: go.Figure,
    theme: dict,
    title: str,
    x_title: str,
    y_title: str,
    height: int = 500
) -> go.Figure:
    """Apply the common title, axis and background styling."""
    font_color = theme['font_color']
    fig.update_layout(
        title=dict(text=title, font=dict(size=16, color=font_color)),
        xaxis=dict(
            title=dict(text=x_title, font=dict(size=14, color=font_color)),
            tickfont=dict(color=font_color),
            gridcolor=theme['gridcolor'],
            zerolinecolor=theme['gridcolor']
        ),
        yaxis=dict(
            title=dict(text=y_title, font=dict(size=14, color=font_color)),
            tickfont=dict(color=font_color),
            gridcolor=theme['gridcolor'],
            zerolinecolor=theme['gridcolor']
        ),
        template=theme['template'],
        paper_bgcolor=theme['paper_bgcolor'],
        plot_bgcolor=theme['plot_bgcolor'],
        font=dict(color=font_color),
        hovermode='closest',
        height=height,
        margin=dict(l=60, r=40, t=80, b=60)
    )
    return fig


def empty_figure(message: str, dark_mode: bool = False, height: int = 400) -> go.Figure:
    """Create an empty figure with a message."""
    theme = get_theme(dark_mode)

    fig = go.Figure()
    fig.add_annotation(
        text=message,
        xref="paper",
        yref="paper",
        x=0.5,
        y=0.5,
        showarrow=False,
        font=dict(size=16, color=theme['font_color'])
    )
    fig.update_layout(
        paper_bgcolor=theme['paper_bgcolor'],
        plot_bgcolor=theme['paper_bgcolor'],
        xaxis=dict(visible=False),
        yaxis=dict(visible=False),
        height=height
    )
    return fig
