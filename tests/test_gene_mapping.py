from unittest.mock import MagicMock

import pandas as pd
import pytest
import requests
from core.errors import AnnotationError
from utils.gene_mapping import GeneAnnotator, detect_id_type


@pytest.mark.parametrize('ids, expected', [
    (['ENSG00000141510', 'ENSG00000012048.22'], 'ensembl'),
    (['7157', '672', '1956'], 'entrez'),
    (['P04637', 'P38398'], 'uniprot'),
    (['TP53', 'BRCA1', 'EGFR'], 'symbol'),
    ([], 'unknown'),
])
def test_detect_id_type(ids, expected):
    assert detect_id_type(ids) == expected


@pytest.fixture
def annotation_file(tmp_path):
    path = tmp_path / 'annotation.tsv'
    path.write_text(
        'GeneID\tGene_Symbol\tEntrezGene\n'
        'ENSG00000141510\tTP53\t7157\n'
        'ENSG00000012048\tBRCA1\t672\n'
        'ENSG00000012048\tDUPLICATE\t0\n'
    )
    return path


def test_load_table(annotation_file):
    table = GeneAnnotator(use_service=False).load_table(str(annotation_file))
    assert list(table.columns) == ['symbol', 'xref']
    assert table.loc['ENSG00000012048', 'symbol'] == 'BRCA1'
    assert len(table) == 2


def test_annotate_from_table(annotation_file):
    annotator = GeneAnnotator(table_path=str(annotation_file))
    annotation = annotator.annotate(['ENSG00000141510', 'ENSG00000000003'])

    assert annotation.loc['ENSG00000141510', 'xref'] == '7157'
    assert pd.isna(annotation.loc['ENSG00000000003', 'symbol'])


def test_annotate_without_service():
    annotation = GeneAnnotator(use_service=False).annotate(['g1', 'g2'])
    assert annotation.index.tolist() == ['g1', 'g2']
    assert annotation['symbol'].isna().all()


def test_annotate_with_service():
    annotator = GeneAnnotator()
    annotator._mygene_client = MagicMock()
    annotator._mygene_client.querymany.return_value = {
        'out': [
            {'query': 'ENSG00000141510', 'symbol': 'TP53', 'entrezgene': 7157},
            {'query': 'ENSG00000000000', 'notfound': True},
        ]
    }

    ids = ['ENSG00000141510.17', 'ENSG00000000000.1']
    annotation = annotator.annotate(ids)

    assert annotation.loc['ENSG00000141510.17', 'symbol'] == 'TP53'
    assert annotation.loc['ENSG00000141510.17', 'xref'] == '7157'
    assert pd.isna(annotation.loc['ENSG00000000000.1', 'symbol'])

    call = annotator._mygene_client.querymany.call_args
    assert call.args[0] == ['ENSG00000141510', 'ENSG00000000000']
    assert call.kwargs['scopes'] == 'ensembl.gene'


def test_service_results_are_cached():
    annotator = GeneAnnotator()
    annotator._mygene_client = MagicMock()
    annotator._mygene_client.querymany.return_value = {
        'out': [{'query': 'TP53', 'symbol': 'TP53', 'entrezgene': 7157}]
    }

    annotator.annotate(['TP53'])
    annotator.annotate(['TP53'])
    assert annotator._mygene_client.querymany.call_count == 1


def test_service_failure_gives_missing_annotation():
    annotator = GeneAnnotator()
    annotator._mygene_client = MagicMock()
    annotator._mygene_client.querymany.side_effect = requests.exceptions.ConnectionError('offline')

    annotation = annotator.annotate(['TP53', 'EGFR'])
    assert annotation['symbol'].isna().all()
    assert annotation['xref'].isna().all()


def test_load_table_without_annotation_columns(tmp_path):
    path = tmp_path / 'bad.tsv'
    path.write_text('GeneID\tLength\nENSG00000141510\t2579\n')
    with pytest.raises(AnnotationError):
        GeneAnnotator(use_service=False).load_table(str(path))
