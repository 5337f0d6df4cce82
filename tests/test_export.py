import io

import pandas as pd
import plotly.graph_objects as go
import pytest
from core.analysis import make_top_table
from utils.export import ReportExporter, create_deg_report, safe_filename, sheet_names


@pytest.fixture
def table():
    return make_top_table(
        ['g1', 'g2', 'g3', 'g4'],
        log2fc=[2.5, -1.5, 0.1, 1.2],
        ave_expr=[5, 6, 7, 8],
        stat=[8.0, -6.0, 0.3, 4.0],
        pvalue=[1e-8, 1e-6, 0.8, 1e-3],
        symbols=pd.Series({'g1': 'ALPHA', 'g2': 'BETA'})
    )


def test_export_dataframe_formats(table):
    exporter = ReportExporter()
    csv = exporter.export_dataframe(table, format='csv')
    assert csv.decode().splitlines()[0] == 'Gene,symbol,log2FC,AveExpr,stat,pvalue,padj'

    tsv = exporter.export_dataframe(table, format='tsv')
    assert pd.read_csv(io.BytesIO(tsv), sep='\t').shape == table.shape

    xlsx = exporter.export_dataframe(table, format='xlsx')
    assert pd.read_excel(io.BytesIO(xlsx))['Gene'].tolist() == table['Gene'].tolist()

    with pytest.raises(ValueError):
        exporter.export_dataframe(table, format='parquet')


def test_write_table_and_workbook(table, tmp_path):
    exporter = ReportExporter(output_dir=str(tmp_path / 'out'))
    csv_path = exporter.write_table(table, 'B_vs_A/voom')
    book_path = exporter.write_workbook(
        {'B_vs_A/voom': table, 'a_very_long_contrast_name_over_31_characters': table},
        'top_tables'
    )

    assert csv_path.name == 'B_vs_A_voom.csv'
    assert pd.read_csv(csv_path).shape == table.shape
    sheets = pd.read_excel(book_path, sheet_name=None)
    assert 'B_vs_A_voom' in sheets
    assert all(len(name) <= 31 for name in sheets)
    assert exporter.written == [csv_path, book_path]


def test_write_figure_html(tmp_path):
    exporter = ReportExporter(output_dir=str(tmp_path))
    fig = go.Figure(go.Scatter(x=[1, 2], y=[3, 4]))
    paths = exporter.write_figure(fig, 'mds plot')

    assert [p.name for p in paths] == ['mds_plot.html']
    assert 'plotly' in paths[0].read_text().lower()


def test_create_deg_report(table):
    report = create_deg_report({'B_vs_A/voom': table}, p_value=0.05, lfc=1.0)
    row = report.iloc[0]

    assert row['Result'] == 'B_vs_A/voom'
    assert row['Total Genes'] == 4
    assert row['Upregulated'] == 2
    assert row['Downregulated'] == 1
    assert row['Significant DEGs'] == 3
    assert row['Top Upregulated'] == 'ALPHA, g4'
    assert row['Top Downregulated'] == 'BETA'


@pytest.mark.parametrize('name, expected', [
    ('B_vs_A/voom', 'B_vs_A_voom'),
    ('treated - ctrl', 'treated_-_ctrl'),
    ('///', 'unnamed'),
])
def test_safe_filename(name, expected):
    assert safe_filename(name) == expected


def test_workbook_keeps_tables_with_long_shared_prefix(table, tmp_path):
    exporter = ReportExporter(output_dir=str(tmp_path))
    quality = table.iloc[:2]
    path = exporter.write_workbook(
        {
            'genotypeKO_R568_vs_genotypeWT/voom': table,
            'genotypeKO_R568_vs_genotypeWT/voom_quality': quality,
        },
        'top_tables'
    )

    sheets = pd.read_excel(path, sheet_name=None)
    assert len(sheets) == 2
    first, second = sheets.values()
    assert first['Gene'].tolist() == table['Gene'].tolist()
    assert second['Gene'].tolist() == quality['Gene'].tolist()


def test_sheet_names_are_unique_within_limit():
    names = sheet_names(['x' * 40, 'x' * 35, 'X' * 31, 'short'])
    assert names[0] == 'x' * 31
    assert names[1] == 'x' * 29 + '_2'
    assert names[2] == 'X' * 29 + '_3'
    assert names[3] == 'short'
    assert all(len(name) <= 31 for name in names)
