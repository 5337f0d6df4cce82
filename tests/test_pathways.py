import json
from unittest.mock import MagicMock, patch

import numpy as np
import pandas as pd
import pytest
import requests
from utils.pathways import GeneSetDatabase, parse_kegg_genes

KEGG_TEXT = """ENTRY       hsa04115                    Pathway
NAME        p53 signaling pathway - Homo sapiens (human)
GENE        7157  TP53; tumor protein p53 [KO:K04451]
            1026  CDKN1A; cyclin dependent kinase inhibitor 1A [KO:K06625]
            4193  MDM2; MDM2 proto-oncogene [KO:K06643]
COMPOUND    C00027  Hydrogen peroxide
"""


@pytest.fixture
def database(tmp_path):
    return GeneSetDatabase(cache_dir=str(tmp_path / 'cache'))


@pytest.fixture
def genes():
    return pd.DataFrame(
        {
            'symbol': ['TP53', 'CDKN1A', 'MDM2', np.nan, 'GAPDH'],
            'xref': ['7157', '1026', '4193', np.nan, '2597'],
        },
        index=['ENSG1', 'ENSG2', 'ENSG3', 'ENSG4', 'ENSG5']
    )


def test_read_gmt(database, tmp_path):
    gmt = tmp_path / 'sets.gmt'
    gmt.write_text(
        'P53_TARGETS\thttp://example.org\tTP53\tcdkn1a\tMDM2\n'
        'NO_GENES\tdescription only\n'
        '\n'
        'HOUSEKEEPING\t-\tGAPDH\t\n'
    )
    assert database.read_gmt(str(gmt)) == 2
    assert database.names == ['HOUSEKEEPING', 'P53_TARGETS']
    assert database.get('HOUSEKEEPING') == {'GAPDH'}
    assert 'NO_GENES' not in database


def test_parse_kegg_genes():
    genes = parse_kegg_genes(KEGG_TEXT)
    assert genes == {'7157', 'TP53', '1026', 'CDKN1A', '4193', 'MDM2'}


def test_to_index_matches_ids_symbols_and_xrefs(database, genes):
    database.add_custom_set('by_symbol', ['tp53', 'mdm2', 'UNKNOWN'])
    database.add_custom_set('by_xref', ['7157', '1026'])
    database.add_custom_set('by_id', ['ENSG5'])

    index = database.to_index(genes)
    np.testing.assert_array_equal(index['by_symbol'], [0, 2])
    np.testing.assert_array_equal(index['by_xref'], [0, 1])
    np.testing.assert_array_equal(index['by_id'], [4])


def test_to_index_size_filter(database, genes):
    database.add_custom_set('small', ['TP53'])
    database.add_custom_set('large', ['TP53', 'CDKN1A', 'MDM2', 'GAPDH'])
    database.add_custom_set('fits', ['TP53', 'CDKN1A'])

    index = database.to_index(genes, min_size=2, max_size=3)
    assert list(index) == ['fits']


def test_fetch_kegg_pathway_from_service(database):
    response = MagicMock(status_code=200, text=KEGG_TEXT)
    with patch('utils.pathways.requests.get', return_value=response) as get:
        genes = database.fetch_kegg_pathway('hsa04115')

    assert 'TP53' in genes
    assert 'hsa04115' in database
    assert get.call_args.args[0] == 'https://rest.kegg.jp/get/hsa04115'
    assert (database.cache_dir / 'kegg_hsa04115.json').exists()


def test_fetch_kegg_pathway_from_cache(database):
    database.cache_dir.mkdir(parents=True)
    (database.cache_dir / 'kegg_hsa00010.json').write_text(json.dumps(['GAPDH', '2597']))

    with patch('utils.pathways.requests.get') as get:
        genes = database.fetch_kegg_pathway('hsa00010')

    get.assert_not_called()
    assert genes == {'GAPDH', '2597'}


def test_fetch_kegg_pathway_failures(database):
    with patch('utils.pathways.requests.get', side_effect=requests.exceptions.Timeout()):
        assert database.fetch_kegg_pathway('hsa04110') is None

    with patch('utils.pathways.requests.get', return_value=MagicMock(status_code=404, text='')):
        assert database.fetch_kegg_pathway('hsa04110') is None

    assert 'hsa04110' not in database


def test_summary(database):
    database.add_custom_set('b', ['X', 'Y'])
    database.add_custom_set('a', ['Z'], source='manual')
    summary = database.summary()
    assert summary['GeneSet'].tolist() == ['a', 'b']
    assert summary['Source'].tolist() == ['manual', 'custom']
    assert summary['Size'].tolist() == [1, 2]
