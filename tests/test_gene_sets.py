import pandas as pd
import pytest
from core.dispersion import estimate_dispersions
from core.gene_sets import COMPETITIVE_COLUMNS, ROTATION_COLUMNS, camera, mroast, roast

NROT = 999


@pytest.fixture(scope='module')
def dge(normalized, design):
    return estimate_dispersions(normalized, design).dge


@pytest.fixture(scope='module')
def positions(normalized):
    genes = normalized.counts.index
    shift = genes.get_loc('SHIFT')
    return {
        'shift': [shift],
        'shift_with_background': [shift] + list(range(5)),
        'null': [genes.get_loc('NULL')],
    }


def test_roast_shift_set_is_significant(dge, design, contrast, positions):
    result = roast(dge, positions['shift'], design, contrast, nrot=NROT)

    assert list(result.index) == ['Down', 'Up', 'UpOrDown', 'Mixed']
    assert result.loc['Up', 'P.Value'] < 0.05
    assert result.loc['UpOrDown', 'P.Value'] < 0.1
    assert result.loc['Down', 'P.Value'] > 0.5
    assert result.loc['Up', 'P.Value'] >= 1 / (NROT + 1)


def test_roast_rejects_empty_set(dge, design, contrast):
    with pytest.raises(ValueError):
        roast(dge, [], design, contrast, nrot=10)


def test_mroast_table(dge, design, contrast, positions):
    table = mroast(dge, positions, design, contrast, nrot=NROT)

    assert list(table.columns) == ROTATION_COLUMNS
    assert set(table.index) == set(positions)
    assert table.loc['shift', 'Direction'] == 'Up'
    assert table.loc['shift', 'PValue'] < 0.05
    assert table.loc['null', 'PValue'] > 0.2
    assert (table['FDR'] >= table['PValue'] - 1e-12).all()
    assert table.loc['shift_with_background', 'NGenes'] == 6


def test_mroast_sign_reversal(dge, design, contrast, positions):
    table = mroast(dge, positions, design, contrast.negate(), nrot=NROT)
    assert table.loc['shift', 'Direction'] == 'Down'


def test_mroast_skips_empty_sets(dge, design, contrast, positions):
    table = mroast(dge, {'empty': [], 'shift': positions['shift']}, design, contrast, nrot=99)
    assert list(table.index) == ['shift']

    empty = mroast(dge, {'empty': []}, design, contrast, nrot=99)
    assert empty.empty
    assert list(empty.columns) == ROTATION_COLUMNS


def test_camera_table(dge, design, contrast, normalized):
    genes = normalized.counts.index
    index = {
        'shift_with_background': [genes.get_loc('SHIFT')] + list(range(10)),
        'background': list(range(20, 40)),
    }
    table = camera(dge, index, design, contrast)

    assert list(table.columns) == COMPETITIVE_COLUMNS
    assert set(table.index) == set(index)
    assert table['PValue'].between(0, 1).all()
    assert table.loc['shift_with_background', 'NGenes'] == 11
    assert table.loc['background', 'NGenes'] == 20


def test_camera_is_deterministic(dge, design, contrast, positions):
    first = camera(dge, positions, design, contrast)
    second = camera(dge, positions, design, contrast)
    pd.testing.assert_frame_equal(first, second)
