"""
Gene set database: GMT files, KEGG pathways and custom sets.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import numpy as np
import pandas as pd
import requests

logger = logging.getLogger(__name__)


class GeneSetDatabase:
    """Collect gene sets and map their members onto an analysed gene list."""

    def __init__(self, cache_dir: Optional[str] = None):
        if cache_dir:
            self.cache_dir = Path(cache_dir)
        else:
            self.cache_dir = Path.home() / '.rnaseq_report' / 'gene_sets'

        self._sets: Dict[str, Set[str]] = {}
        self._sources: Dict[str, str] = {}

    def __len__(self):
        return len(self._sets)

    def __contains__(self, name: str) -> bool:
        return name in self._sets

    @property
    def names(self) -> List[str]:
        return sorted(self._sets)

    def get(self, name: str) -> Set[str]:
        return self._sets.get(name, set())

    def add_custom_set(self, name: str, genes: Iterable[str], source: str = 'custom'):
        """Add a gene set; members may be gene IDs, symbols or cross-reference IDs."""
        members = {str(g).strip() for g in genes if pd.notna(g) and str(g).strip()}
        if name in self._sets:
            logger.warning("Gene set '%s' replaced", name)
        self._sets[name] = members
        self._sources[name] = source

    def read_gmt(self, path: str) -> int:
        """
        Read gene sets from a GMT file.

        Each line holds the set name, a description and the member genes,
        separated by tabs.

        Returns:
            Number of sets read
        """
        n_read = 0
        with open(path) as f:
            for line_no, line in enumerate(f, start=1):
                fields = line.rstrip('\n\r').split('\t')
                if not fields[0].strip():
                    continue
                if len(fields) < 3:
                    logger.warning("%s line %d has no genes; skipped", path, line_no)
                    continue
                self.add_custom_set(fields[0].strip(), fields[2:], source=Path(path).name)
                n_read += 1

        logger.info("Read %d gene sets from %s", n_read, path)
        return n_read

    def fetch_kegg_pathway(self, pathway_id: str) -> Optional[Set[str]]:
        """
        Fetch genes of a KEGG pathway, cached on disk.

        Both the Entrez IDs and the symbols listed by KEGG become members.

        Args:
            pathway_id: KEGG pathway ID (e.g., 'hsa04310' for Wnt signaling)

        Returns:
            Set of members, or None if the pathway could not be fetched
        """
        cache_file = self.cache_dir / f'kegg_{pathway_id}.json'

        if cache_file.exists():
            with open(cache_file) as f:
                genes = set(json.load(f))
            self.add_custom_set(pathway_id, genes, source='KEGG')
            return genes

        try:
            response = requests.get(f'https://rest.kegg.jp/get/{pathway_id}', timeout=10)
        except requests.exceptions.RequestException as e:
            logger.warning("KEGG request for %s failed: %s", pathway_id, e)
            return None

        if response.status_code != 200:
            logger.warning("KEGG returned status %d for %s", response.status_code, pathway_id)
            return None

        genes = parse_kegg_genes(response.text)
        if not genes:
            logger.warning("KEGG pathway %s lists no genes", pathway_id)
            return None

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        with open(cache_file, 'w') as f:
            json.dump(sorted(genes), f)

        self.add_custom_set(pathway_id, genes, source='KEGG')
        return genes

    def to_index(
        self,
        genes: pd.DataFrame,
        min_size: int = 1,
        max_size: Optional[int] = None
    ) -> Dict[str, np.ndarray]:
        """
        Map set members to row positions of the analysed genes.

        Args:
            genes: Gene-level frame indexed by gene ID, optionally with
                ``symbol`` and ``xref`` columns
            min_size: Drop sets with fewer matched genes
            max_size: Drop sets with more matched genes

        Returns:
            Dictionary of set name to sorted row positions
        """
        lookup: Dict[str, Set[int]] = {}

        def register(keys, positions):
            for key, pos in zip(keys, positions):
                if pd.notna(key):
                    lookup.setdefault(str(key).strip().upper(), set()).add(pos)

        positions = np.arange(len(genes))
        register(genes.index, positions)
        for col in ('symbol', 'xref'):
            if col in genes.columns:
                register(genes[col].values, positions)

        index = {}
        for name in self.names:
            matched = set()
            for member in self._sets[name]:
                matched |= lookup.get(member.upper(), set())

            size = len(matched)
            if size < min_size or (max_size is not None and size > max_size):
                logger.debug("Gene set '%s' with %d matched genes dropped", name, size)
                continue
            index[name] = np.array(sorted(matched), dtype=int)

        logger.info("%d of %d gene sets kept after size filtering", len(index), len(self))
        return index

    def summary(self) -> pd.DataFrame:
        """One row per set with its source and number of members."""
        return pd.DataFrame(
            [
                {'GeneSet': name, 'Source': self._sources[name], 'Size': len(self._sets[name])}
                for name in self.names
            ],
            columns=['GeneSet', 'Source', 'Size']
        )


def parse_kegg_genes(text: str) -> Set[str]:
    """Extract Entrez IDs and symbols from the GENE section of a KEGG flat file."""
    genes = set()
    in_gene_section = False

    for line in text.split('\n'):
        if line.startswith('GENE'):
            in_gene_section = True
            parts = line.split()[1:]
        elif in_gene_section and line.startswith(' '):
            parts = line.split()
        elif in_gene_section:
            break
        else:
            continue

        if parts:
            genes.add(parts[0])
        if len(parts) >= 2:
            genes.add(parts[1].rstrip(';'))

    return genes
