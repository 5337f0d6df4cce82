"""
RNA-seq Differential Expression Report

A Streamlit page that runs the report pipeline on an uploaded count matrix
and shows the quality plots, model diagnostics, ranked tables and gene set
tests side by side for every fitting strategy.
"""

import json
import tempfile
from datetime import datetime
from pathlib import Path

import pandas as pd
import streamlit as st

from core.config import STRATEGIES, AnalysisConfig, configure_logging
from core.controller import (
    decision_summary, flat_tables, infer_samples, load_uploaded_counts,
    load_uploaded_sample_sheet, run_analysis
)
from core.analysis import StrategyComparison
from core.pipeline import ReportPipeline
from plotting import create_gene_set_members_barplot, create_multi_volcano
from utils import ReportExporter
from utils.export import create_deg_report

configure_logging()

# Page config
st.set_page_config(
    page_title="RNA-seq DE Report",
    page_icon="🧬",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Initialize session state
if 'context' not in st.session_state:
    st.session_state.context = None
if 'dark_mode' not in st.session_state:
    st.session_state.dark_mode = False
if 'exporter' not in st.session_state:
    st.session_state.exporter = ReportExporter()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_figure_download_buttons(fig, filename_base: str, key_suffix: str = ""):
    """Create download buttons for PNG and HTML export of a Plotly figure."""
    col1, col2 = st.columns(2)

    with col1:
        try:
            png_bytes = st.session_state.exporter.export_figure(fig, format="png")
            st.download_button(
                "📥 Download PNG",
                data=png_bytes,
                file_name=f"{filename_base}.png",
                mime="image/png",
                key=f"png_{filename_base}_{key_suffix}"
            )
        except ValueError:
            st.caption("PNG export requires kaleido: `pip install kaleido`")

    with col2:
        st.download_button(
            "📥 Download HTML",
            data=fig.to_html(include_plotlyjs='cdn'),
            file_name=f"{filename_base}.html",
            mime="text/html",
            key=f"html_{filename_base}_{key_suffix}"
        )


def show_figure(name: str, key_suffix: str = ""):
    fig = st.session_state.context.figures.get(name)
    if fig is None:
        st.info(f"No '{name}' figure for this run.")
        return
    st.plotly_chart(fig, use_container_width=True)
    get_figure_download_buttons(fig, name.replace('/', '_'), key_suffix)


def build_config(params: dict) -> str:
    """JSON configuration for the cached analysis run."""
    config = AnalysisConfig.from_dict(params)
    return json.dumps({
        'covariates': config.covariates,
        'block': config.block,
        'contrasts': config.contrasts,
        'species': config.species,
        'use_annotation_service': config.use_annotation_service,
        'filtering': vars(config.filtering),
        'normalization': vars(config.normalization),
        'dispersion': vars(config.dispersion),
        'fit': {**vars(config.fit), 'strategies': list(config.fit.strategies)},
        'testing': vars(config.testing),
        'gene_sets': vars(config.gene_sets),
    }, sort_keys=True)


def main():
    """Main application entry point."""

    with st.sidebar:
        st.title("🧬 DE Report")
        st.markdown("---")

        st.session_state.dark_mode = st.toggle("Dark Mode", value=st.session_state.dark_mode)

        st.markdown("### Significance")
        pvalue_threshold = st.select_slider(
            "Adjusted p-value threshold",
            options=[0.001, 0.01, 0.05, 0.1],
            value=0.05
        )
        lfc = st.slider(
            "Minimum |log2FC| (TREAT)",
            min_value=0.0,
            max_value=3.0,
            value=0.0,
            step=0.1,
            help="Tests against a minimum fold change instead of zero"
        )

        st.markdown("### Strategies")
        strategies = st.multiselect(
            "Fitting strategies",
            options=list(STRATEGIES),
            default=['ql_glm', 'voom', 'voom_quality']
        )
        robust = st.checkbox("Robust empirical Bayes", value=True)

        ctx = st.session_state.context
        if ctx is not None:
            st.markdown("---")
            st.markdown("### Current Run")
            st.caption(
                f"**{ctx.normalized.n_genes}** of {ctx.raw.n_genes} genes after filtering, "
                f"**{ctx.normalized.n_samples}** samples"
            )
            for contrast in ctx.contrasts:
                st.caption(f"Contrast **{contrast.name}**")

    tabs = st.tabs([
        "📁 Data Import",
        "🔬 Sample QC",
        "📉 Diagnostics",
        "🌋 DE Results",
        "📊 Strategy Comparison",
        "🧩 Gene Sets",
        "💾 Export"
    ])

    with tabs[0]:
        data_import_tab(pvalue_threshold, lfc, strategies, robust)

    with tabs[1]:
        qc_tab()

    with tabs[2]:
        diagnostics_tab()

    with tabs[3]:
        results_tab()

    with tabs[4]:
        comparison_tab(pvalue_threshold, lfc)

    with tabs[5]:
        gene_set_tab(pvalue_threshold)

    with tabs[6]:
        export_tab(pvalue_threshold, lfc)


def data_import_tab(pvalue_threshold: float, lfc: float, strategies, robust: bool):
    """Upload counts and sample sheet, configure and run the analysis."""
    st.header("Data Import & Configuration")

    col1, col2 = st.columns([1, 1])

    with col1:
        st.subheader("Count Matrix")
        counts_file = st.file_uploader(
            "Tab-separated counts (genes x samples)",
            type=['tsv', 'txt'],
            help="First column: gene ID; header: sample names"
        )
        samples_file = st.file_uploader(
            "Sample sheet (optional)",
            type=['tsv', 'txt', 'csv', 'xlsx'],
            help="Indexed by sample name. Without one, groups are inferred from sample names."
        )
        gmt_files = st.file_uploader(
            "Gene set files (GMT, optional)",
            type=['gmt'],
            accept_multiple_files=True
        )

    if not counts_file:
        with col2:
            st.info("Upload a count matrix to start.")
        return

    counts, _, error = load_uploaded_counts(counts_file)
    if error:
        st.error(error)
        return

    if samples_file:
        samples, error = load_uploaded_sample_sheet(samples_file)
        if error:
            st.error(error)
            return
    else:
        samples = infer_samples(tuple(counts.columns))

    with col2:
        st.subheader("Design")
        st.caption(f"{counts.shape[0]} genes x {counts.shape[1]} samples")

        columns = list(samples.columns)
        covariates = st.multiselect(
            "Covariates defining groups",
            options=columns,
            default=[columns[0]] if columns else []
        )
        block = st.multiselect(
            "Blocking covariates",
            options=[c for c in columns if c not in covariates]
        )
        st.dataframe(samples, use_container_width=True, height=200)

        contrast_text = st.text_area(
            "Contrasts (one per line, name = expression)",
            placeholder="treated_vs_control = treated - control",
            help="Leave empty to compare every group with the first one"
        )
        min_count = st.number_input("Minimum count (filter)", min_value=0, value=10)
        species = st.selectbox("Species", options=['human', 'mouse', 'rat'])
        use_service = st.checkbox("Annotate genes with MyGene.info", value=False)

    contrasts = {}
    for line in contrast_text.splitlines():
        if '=' in line:
            name, expr = line.split('=', 1)
            contrasts[name.strip()] = expr.strip()

    gmt_paths = []
    if gmt_files:
        gmt_dir = Path(tempfile.mkdtemp(prefix='gmt_'))
        for uploaded in gmt_files:
            path = gmt_dir / uploaded.name
            path.write_bytes(uploaded.getvalue())
            gmt_paths.append(str(path))

    if st.button("▶️ Run Analysis", type="primary", disabled=not (covariates and strategies)):
        params = {
            'covariates': covariates,
            'block': block,
            'contrasts': contrasts,
            'species': species,
            'use_annotation_service': use_service,
            'filtering': {'min_count': min_count, 'drop_unannotated': use_service},
            'fit': {'strategies': strategies, 'robust': robust},
            'testing': {'p_value': pvalue_threshold, 'lfc': lfc},
            'gene_sets': {'gmt_files': gmt_paths},
        }
        try:
            config_json = build_config(params)
        except ValueError as e:
            st.error(f"Invalid configuration: {e}")
            return

        with st.spinner("Running analysis..."):
            ctx, error = run_analysis(counts, samples, config_json, st.session_state.dark_mode)

        if error:
            st.error(error)
            return
        st.session_state.context = ctx
        st.success(
            f"Analysis finished: {len(ctx.fits)} strategies x {len(ctx.contrasts)} contrasts"
        )
        st.dataframe(decision_summary(ctx), use_container_width=True)


def qc_tab():
    st.header("Sample Quality")

    if st.session_state.context is None:
        st.info("Please run the analysis in the Data Import tab first.")
        return

    col1, col2 = st.columns(2)
    with col1:
        show_figure('logcpm_raw', 'qc')
    with col2:
        show_figure('logcpm_normalized', 'qc')

    show_figure('mds', 'qc')

    ctx = st.session_state.context
    st.subheader("Library sizes and normalization factors")
    st.dataframe(
        pd.DataFrame({
            'group': ctx.normalized.group,
            'lib_size': ctx.normalized.lib_size,
            'norm_factor': ctx.normalized.norm_factors,
        }),
        use_container_width=True
    )


def diagnostics_tab():
    st.header("Model Diagnostics")

    ctx = st.session_state.context
    if ctx is None:
        st.info("Please run the analysis in the Data Import tab first.")
        return

    if ctx.dispersions is not None:
        st.metric("Common BCV", f"{ctx.dispersions.bcv:.3f}")
        show_figure('bcv', 'diag')
    if 'ql_glm' in ctx.fits:
        show_figure('ql_dispersion', 'diag')
    for name in ('voom', 'voom_quality'):
        if name in ctx.fits:
            show_figure(f'{name}_trend', 'diag')
    if 'voom_quality' in ctx.fits:
        show_figure('sample_weights', 'diag')


def results_tab():
    """Volcano, MD plot, heatmap and TopTable per contrast and strategy."""
    st.header("Differential Expression")

    ctx = st.session_state.context
    if ctx is None:
        st.info("Please run the analysis in the Data Import tab first.")
        return

    col1, col2 = st.columns(2)
    with col1:
        contrast = st.selectbox("Contrast", options=list(ctx.tables.keys()))
    with col2:
        strategy = st.selectbox("Strategy", options=list(ctx.fits.keys()))

    if not contrast or not strategy:
        return

    plot_col1, plot_col2 = st.columns(2)
    with plot_col1:
        show_figure(f'{contrast}/{strategy}/volcano', 'res')
    with plot_col2:
        show_figure(f'{contrast}/{strategy}/md', 'res')

    table = ctx.tables[contrast][strategy]
    st.subheader("Top Table")
    st.dataframe(table.head(500), use_container_width=True, height=400)

    show_figure(f'{contrast}/heatmap', 'res')

    if len(ctx.fits) > 1 and st.checkbox("Show all strategies in grid"):
        testing = ctx.config.testing
        multi_fig = create_multi_volcano(
            ctx.tables[contrast],
            log2fc_threshold=testing.lfc,
            pvalue_threshold=testing.p_value,
            dark_mode=st.session_state.dark_mode
        )
        st.plotly_chart(multi_fig, use_container_width=True)


def comparison_tab(pvalue_threshold: float, lfc: float):
    """Agreement between strategies for one contrast."""
    st.header("Strategy Comparison")

    ctx = st.session_state.context
    if ctx is None:
        st.info("Please run the analysis in the Data Import tab first.")
        return
    if len(ctx.fits) < 2:
        st.info("Run at least two strategies to compare them.")
        return

    contrast = st.selectbox("Contrast", options=list(ctx.tables.keys()), key="cmp_contrast")
    comparison = StrategyComparison(log2fc_threshold=lfc, pvalue_threshold=pvalue_threshold)
    tables = ctx.tables[contrast]

    st.dataframe(comparison.concordance_stats(tables), use_container_width=True)

    strategies = list(tables.keys())
    col1, col2 = st.columns(2)
    with col1:
        strategy_a = st.selectbox("Strategy A", options=strategies, index=0)
    with col2:
        strategy_b = st.selectbox("Strategy B", options=strategies, index=1)

    if strategy_a == strategy_b:
        st.warning("Choose two different strategies.")
        return

    name = f'{contrast}/{strategy_a}_vs_{strategy_b}'
    if name not in ctx.figures:
        name = f'{contrast}/{strategy_b}_vs_{strategy_a}'
    show_figure(name, 'cmp')

    st.subheader("Genes significant in every strategy")
    st.dataframe(comparison.export_summary(tables), use_container_width=True, height=300)


def gene_set_tab(pvalue_threshold: float):
    st.header("Gene Set Tests")

    ctx = st.session_state.context
    if ctx is None:
        st.info("Please run the analysis in the Data Import tab first.")
        return
    if not ctx.gene_set_results:
        st.info("No gene sets were tested. Upload GMT files in the Data Import tab.")
        return

    contrast = st.selectbox("Contrast", options=list(ctx.gene_set_results.keys()), key="gs_contrast")
    results = ctx.gene_set_results[contrast]

    show_figure(f'{contrast}/gene_sets', 'gs')

    col1, col2 = st.columns(2)
    with col1:
        st.subheader("Rotation (self-contained)")
        st.dataframe(results['rotation'], use_container_width=True, height=400)
    with col2:
        st.subheader("Competitive (camera)")
        st.dataframe(results['competitive'], use_container_width=True, height=400)

    set_name = st.selectbox("Inspect gene set", options=list(results['rotation'].index))
    if set_name:
        members = ctx.normalized.counts.index[ctx.gene_set_index[set_name]]
        fig = create_gene_set_members_barplot(
            ctx.tables[contrast], members, set_name,
            pvalue_threshold=pvalue_threshold,
            dark_mode=st.session_state.dark_mode
        )
        st.plotly_chart(fig, use_container_width=True)


def export_tab(pvalue_threshold: float, lfc: float):
    st.header("Export Tables & Figures")

    ctx = st.session_state.context
    if ctx is None:
        st.info("Please run the analysis in the Data Import tab first.")
        return

    exporter = st.session_state.exporter
    tables = flat_tables(ctx)

    col1, col2 = st.columns(2)

    with col1:
        st.subheader("Summary Report")
        report = create_deg_report(tables, p_value=pvalue_threshold, lfc=lfc)
        st.dataframe(report, use_container_width=True)
        st.download_button(
            "📥 Download Summary (CSV)",
            exporter.export_dataframe(report, format='csv'),
            "de_summary.csv",
            "text/csv"
        )

    with col2:
        st.subheader("Individual Table")
        name = st.selectbox("Select table", options=list(tables.keys()))
        if name:
            base = name.replace('/', '_')
            st.download_button(
                f"📥 Download {name} (CSV)",
                exporter.export_dataframe(tables[name], format='csv'),
                f"{base}.csv",
                "text/csv",
                use_container_width=True
            )
            st.download_button(
                f"📥 Download {name} (Excel)",
                exporter.export_dataframe(tables[name], format='xlsx'),
                f"{base}.xlsx",
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                use_container_width=True
            )

    st.markdown("---")
    st.subheader("Write Full Report")
    output_dir = st.text_input(
        "Output directory",
        value=f"report_{datetime.now().strftime('%Y%m%d_%H%M')}"
    )
    if st.button("💾 Write report"):
        written = ReportPipeline(ctx.config).export(ctx, ReportExporter(output_dir))
        st.success(f"Wrote {len(written)} files to {output_dir}")


if __name__ == "__main__":
    main()
