"""
Gene annotation: identifier to symbol and cross-reference ID.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import requests

from core.errors import AnnotationError

logger = logging.getLogger(__name__)

ANNOTATION_COLUMNS = ['symbol', 'xref']

SCOPES = {
    'uniprot': 'uniprot',
    'ensembl': 'ensembl.gene',
    'entrez': 'entrezgene',
    'symbol': 'symbol,alias',
}


def detect_id_type(ids: List[str]) -> str:
    """
    Detect the type of identifier.

    Args:
        ids: List of identifiers

    Returns:
        Identifier type: 'symbol', 'uniprot', 'ensembl', 'entrez', or 'unknown'
    """
    sample = [str(i).strip() for i in list(ids)[:100] if pd.notna(i)]

    if not sample:
        return 'unknown'

    # UniProt pattern (e.g., P04637, Q9Y6K9)
    uniprot_pattern = re.compile(
        r'^[OPQ][0-9][A-Z0-9]{3}[0-9]|[A-NR-Z][0-9]([A-Z][A-Z0-9]{2}[0-9]){1,2}$'
    )
    # Ensembl gene, with optional version suffix (e.g., ENSG00000141510.17)
    ensembl_pattern = re.compile(r'^ENS[A-Z]*G[0-9]{11}(\.[0-9]+)?$')
    symbol_pattern = re.compile(r'^[A-Z][A-Z0-9\-]{1,15}$', re.IGNORECASE)

    total = len(sample)
    scores = {
        'ensembl': sum(1 for i in sample if ensembl_pattern.match(i)) / total,
        'entrez': sum(1 for i in sample if i.isdigit()) / total,
        'uniprot': sum(1 for i in sample if uniprot_pattern.match(i)) / total,
        'symbol': sum(1 for i in sample if symbol_pattern.match(i)) / total,
    }

    best = max(scores, key=scores.get)
    if scores[best] > 0.5:
        return best
    return 'symbol'


class GeneAnnotator:
    """Annotate gene identifiers with a symbol and a cross-reference ID.

    Annotation comes from a local lookup table when one is given, otherwise
    from the MyGene.info service. Genes that cannot be annotated get missing
    values.
    """

    def __init__(
        self,
        species: str = 'human',
        table_path: Optional[str] = None,
        use_service: bool = True
    ):
        self.species = species
        self.table_path = table_path
        self.use_service = use_service
        self._cache: Dict[str, Tuple[Optional[str], Optional[str]]] = {}
        self._mygene_client = None
        self._table = None

    def _get_mygene_client(self):
        """Lazy load mygene client."""
        if self._mygene_client is None:
            try:
                import mygene
                self._mygene_client = mygene.MyGeneInfo()
            except ImportError:
                raise ImportError(
                    "mygene is required for ID conversion. "
                    "Install with: pip install mygene"
                )
        return self._mygene_client

    def load_table(self, path: str) -> pd.DataFrame:
        """
        Read a local annotation table.

        The first column holds the gene identifier; ``symbol`` and ``xref``
        columns are matched case-insensitively (``entrez``/``entrezgene``
        are accepted for ``xref``).
        """
        table = pd.read_csv(path, sep='\t', index_col=0, dtype=str)
        rename = {}
        for col in table.columns:
            key = col.strip().lower()
            if key in ('symbol', 'gene_symbol', 'genename', 'gene_name'):
                rename[col] = 'symbol'
            elif key in ('xref', 'entrez', 'entrezgene', 'entrez_id', 'entrezid'):
                rename[col] = 'xref'
        table = table.rename(columns=rename)
        if not set(rename.values()):
            raise AnnotationError(f"Annotation table {path} has neither a symbol nor an xref column")

        for col in ANNOTATION_COLUMNS:
            if col not in table.columns:
                table[col] = np.nan

        table.index = table.index.astype(str).str.strip()
        table = table[~table.index.duplicated(keep='first')]
        logger.info("Loaded %d annotations from %s", len(table), path)
        return table[ANNOTATION_COLUMNS]

    def annotate(self, gene_ids) -> pd.DataFrame:
        """
        Annotate gene identifiers.

        Args:
            gene_ids: Gene identifiers

        Returns:
            DataFrame indexed by gene ID with ``symbol`` and ``xref`` columns
        """
        ids = [str(i) for i in gene_ids]

        if self.table_path:
            if self._table is None:
                self._table = self.load_table(self.table_path)
            annotation = self._table.reindex(ids)
        elif self.use_service:
            annotation = self._query_service(ids)
        else:
            annotation = pd.DataFrame(np.nan, index=ids, columns=ANNOTATION_COLUMNS, dtype=object)

        annotation.index = pd.Index(ids, name=None)
        missing = int(annotation['symbol'].isna().sum())
        if missing:
            logger.warning("%d of %d genes have no symbol annotation", missing, len(ids))
        return annotation

    def _query_service(self, ids: List[str]) -> pd.DataFrame:
        id_type = detect_id_type(ids)
        query_map = {self._strip_version(i, id_type): i for i in ids}
        to_query = [q for q in query_map if q not in self._cache]

        if to_query:
            mg = self._get_mygene_client()
            try:
                results = mg.querymany(
                    to_query,
                    scopes=SCOPES.get(id_type, 'symbol,alias'),
                    fields='symbol,entrezgene',
                    species=self.species,
                    returnall=True,
                    verbose=False
                )
            except requests.exceptions.RequestException as e:
                logger.warning("Annotation service unavailable: %s", e)
                results = {'out': []}

            for item in results.get('out', []):
                query = str(item.get('query', ''))
                if item.get('notfound') or query in self._cache:
                    continue
                entrez = item.get('entrezgene')
                self._cache[query] = (
                    item.get('symbol'),
                    str(entrez) if entrez is not None else None
                )

        rows = {
            original: self._cache.get(query, (None, None))
            for query, original in query_map.items()
        }
        annotation = pd.DataFrame.from_dict(rows, orient='index', columns=ANNOTATION_COLUMNS)
        return annotation.reindex(ids).replace({None: np.nan})

    @staticmethod
    def _strip_version(gene_id: str, id_type: str) -> str:
        if id_type == 'ensembl':
            return gene_id.split('.')[0]
        return gene_id
