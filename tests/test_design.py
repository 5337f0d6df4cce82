import numpy as np
import pandas as pd
import pytest
from core.design import check_design, design_matrix, make_contrasts, parse_contrast
from core.errors import ContrastError, DesignError


@pytest.fixture
def samples():
    return pd.DataFrame(
        {
            'group': ['A_x', 'A_x', 'B_x', 'B_x', 'B_y', 'B_y'],
            'batch': ['1', '2', '1', '2', '1', '2'],
        },
        index=[f's{i}' for i in range(6)]
    )


def test_group_means_design(samples):
    design = design_matrix(samples)
    assert list(design.columns) == ['A_x', 'B_x', 'B_y']
    assert design.values.sum(axis=1).tolist() == [1.0] * 6
    assert check_design(design) == 3


def test_design_with_block(samples):
    design = design_matrix(samples, block=['batch'])
    assert list(design.columns) == ['A_x', 'B_x', 'B_y', 'batch_2']
    assert design['batch_2'].tolist() == [0, 1, 0, 1, 0, 1]


def test_empty_group_is_fatal(samples):
    design = design_matrix(samples, levels=['A_x', 'B_x', 'B_y', 'C'])
    with pytest.raises(DesignError, match="zero samples"):
        check_design(design)


def test_unknown_group_level(samples):
    with pytest.raises(DesignError):
        design_matrix(samples, levels=['A_x', 'B_x'])


def test_rank_deficient_design():
    samples = pd.DataFrame(
        {'group': ['a', 'a', 'b', 'b'], 'batch': ['1', '1', '2', '2']},
        index=list('wxyz')
    )
    design = design_matrix(samples, block=['batch'])
    with pytest.raises(DesignError, match="full rank"):
        check_design(design)


def test_no_residual_df():
    samples = pd.DataFrame({'group': ['a', 'b']}, index=['s1', 's2'])
    with pytest.raises(DesignError, match="residual"):
        check_design(design_matrix(samples))


def test_parse_contrast_average(samples):
    design = design_matrix(samples)
    contrast = parse_contrast('(B_x + B_y)/2 - A_x', design.columns)
    np.testing.assert_allclose(contrast.values(design), [-1.0, 0.5, 0.5])
    assert contrast.name == '(B_x + B_y)/2 - A_x'


def test_negate_flips_vector(samples):
    design = design_matrix(samples)
    contrast = parse_contrast('B_y - B_x', design.columns, name='y_vs_x')
    np.testing.assert_allclose(contrast.negate().values(design), [0.0, 1.0, -1.0])


@pytest.mark.parametrize('expression, message', [
    ('C - A_x', 'Unknown design column'),
    ('B_x * A_x', 'not linear'),
    ('A_x / B_x', 'divides'),
    ('A_x - A_x', 'zero'),
    ('2', 'does not reference'),
    ('A_x -', 'Cannot parse'),
    ('abs(A_x)', 'Unsupported'),
])
def test_invalid_contrasts(samples, expression, message):
    design = design_matrix(samples)
    with pytest.raises(ContrastError, match=message):
        parse_contrast(expression, design.columns)


def test_make_contrasts_keeps_names(samples):
    design = design_matrix(samples)
    contrasts = make_contrasts(design, {'BvsA': 'B_x - A_x', 'YvsX': 'B_y - B_x'})
    assert [c.name for c in contrasts] == ['BvsA', 'YvsX']
