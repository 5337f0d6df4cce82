import json
from unittest.mock import patch

from core.controller import flat_tables, run_analysis
from core.pipeline import ReportPipeline


def test_run_analysis_goes_through_pipeline_run(simulated):
    counts, samples = simulated
    config_json = json.dumps({'fit': {'strategies': ['voom']}})

    with patch.object(ReportPipeline, 'run', autospec=True, side_effect=ReportPipeline.run) as run:
        ctx, error = run_analysis(counts, samples, config_json, dark_mode=True)

    assert error is None
    run.assert_called_once()
    assert run.call_args.kwargs['figures'] is False
    assert {'mds', 'voom_trend', 'B_vs_A/voom/volcano'} <= set(ctx.figures)
    assert list(flat_tables(ctx)) == ['B_vs_A/voom']


def test_run_analysis_reports_bad_contrast(simulated):
    counts, samples = simulated
    config_json = json.dumps({
        'fit': {'strategies': ['voom']},
        'contrasts': {'bad': 'B - C'},
    })

    ctx, error = run_analysis(counts, samples, config_json)
    assert ctx is None
    assert "Unknown design column 'C'" in error
