"""
Export utilities for report figures and tables.
"""

import io
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd
import plotly.graph_objects as go

logger = logging.getLogger(__name__)


class ReportExporter:
    """Write report tables and figures into an output directory."""

    def __init__(
        self,
        output_dir: str = 'report',
        image_format: Optional[str] = None,
        dpi: int = 300
    ):
        self.output_dir = Path(output_dir)
        self.image_format = image_format
        self.dpi = dpi
        self.written: List[Path] = []

    def _path(self, name: str, suffix: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir / f'{safe_filename(name)}.{suffix}'

    def export_figure(
        self,
        fig: go.Figure,
        format: str = 'png',
        width: int = 1200,
        height: int = 800
    ) -> bytes:
        """
        Export Plotly figure to image bytes.

        Args:
            fig: Plotly figure
            format: 'png', 'svg' or 'pdf'
            width: Image width in pixels
            height: Image height in pixels

        Returns:
            Image bytes
        """
        scale = self.dpi / 96  # Plotly default is 96 DPI

        return fig.to_image(
            format=format,
            width=width,
            height=height,
            scale=scale
        )

    def export_dataframe(self, df: pd.DataFrame, format: str = 'csv', index: bool = False) -> bytes:
        """
        Export DataFrame to file bytes.

        Args:
            df: DataFrame to export
            format: 'csv', 'tsv' or 'xlsx'
            index: Write the row index

        Returns:
            File bytes
        """
        buffer = io.BytesIO()

        if format == 'csv':
            df.to_csv(buffer, index=index)
        elif format == 'tsv':
            df.to_csv(buffer, sep='\t', index=index)
        elif format == 'xlsx':
            df.to_excel(buffer, index=index, engine='openpyxl')
        else:
            raise ValueError(f"Unsupported table format: {format}")

        buffer.seek(0)
        return buffer.getvalue()

    def write_table(self, df: pd.DataFrame, name: str, format: str = 'csv', index: bool = False) -> Path:
        """Write a table to the output directory."""
        path = self._path(name, format)
        path.write_bytes(self.export_dataframe(df, format=format, index=index))
        self.written.append(path)
        logger.info("Wrote %s", path)
        return path

    def write_workbook(self, tables: Dict[str, pd.DataFrame], name: str) -> Path:
        """Write several tables into one Excel workbook, one sheet each."""
        path = self._path(name, 'xlsx')
        with pd.ExcelWriter(path, engine='openpyxl') as writer:
            for sheet, df in zip(sheet_names(tables), tables.values()):
                df.to_excel(writer, sheet_name=sheet, index=False)
        self.written.append(path)
        logger.info("Wrote %s", path)
        return path

    def write_figure(self, fig: go.Figure, name: str) -> List[Path]:
        """
        Write a figure as standalone HTML, plus a static image when an
        image format is configured.
        """
        paths = []
        html_path = self._path(name, 'html')
        fig.write_html(str(html_path), include_plotlyjs='cdn')
        paths.append(html_path)

        if self.image_format:
            image_path = self._path(name, self.image_format)
            image_path.write_bytes(self.export_figure(fig, format=self.image_format))
            paths.append(image_path)

        self.written.extend(paths)
        logger.info("Wrote figure %s", name)
        return paths


def create_deg_report(
    tables: Dict[str, pd.DataFrame],
    p_value: float = 0.05,
    lfc: float = 0.0
) -> pd.DataFrame:
    """
    Summarize significant genes per result table.

    Args:
        tables: Dictionary of result name (e.g. ``contrast/strategy``) to TopTable
        p_value: Adjusted p-value cutoff
        lfc: Minimum absolute log2 fold change

    Returns:
        Summary DataFrame
    """
    summary_rows = []

    for name, df in tables.items():
        padj = df['padj'].fillna(1.0)
        label = df['symbol'].fillna(df['Gene']) if 'symbol' in df.columns else df['Gene']

        up_mask = (df['log2FC'] >= lfc) & (df['log2FC'] > 0) & (padj <= p_value)
        down_mask = (df['log2FC'] <= -lfc) & (df['log2FC'] < 0) & (padj <= p_value)

        summary_rows.append({
            'Result': name,
            'Total Genes': len(df),
            'Significant DEGs': int(up_mask.sum() + down_mask.sum()),
            'Upregulated': int(up_mask.sum()),
            'Downregulated': int(down_mask.sum()),
            'Top Upregulated': ', '.join(
                label[up_mask].loc[df[up_mask].nlargest(5, 'log2FC').index].astype(str)
            ),
            'Top Downregulated': ', '.join(
                label[down_mask].loc[df[down_mask].nsmallest(5, 'log2FC').index].astype(str)
            )
        })

    return pd.DataFrame(summary_rows)


def safe_filename(name: str) -> str:
    return re.sub(r'[^\w.-]+', '_', str(name)).strip('_') or 'unnamed'


def sheet_names(names: Iterable[str], max_length: int = 31) -> List[str]:
    """
    Excel sheet names for ``names``, unique after truncation.

    Excel limits names to 31 characters and compares them case-insensitively;
    clashes get a ``_2``, ``_3``... suffix within the limit.
    """
    result = []
    seen = set()
    for name in names:
        base = safe_filename(name)
        candidate = base[:max_length]
        n = 1
        while candidate.lower() in seen:
            n += 1
            suffix = f'_{n}'
            candidate = base[:max_length - len(suffix)] + suffix
        seen.add(candidate.lower())
        result.append(candidate)
    return result
