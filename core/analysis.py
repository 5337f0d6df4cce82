"""
Top tables, decisions and cross-strategy comparison of DE results.
"""

from itertools import combinations
from typing import Dict, Optional, Set, Tuple

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

TOP_TABLE_COLUMNS = ['Gene', 'symbol', 'log2FC', 'AveExpr', 'stat', 'pvalue', 'padj']


def benjamini_hochberg(pvalues) -> np.ndarray:
    """
    Benjamini-Hochberg adjusted p-values.

    NaN p-values are left as NaN and not counted as tests.
    """
    pvalues = np.asarray(pvalues, dtype=float)
    padj = np.full(pvalues.shape, np.nan)
    valid = ~np.isnan(pvalues)
    if valid.any():
        padj[valid] = multipletests(pvalues[valid], method='fdr_bh')[1]
    return padj


def make_top_table(
    genes,
    log2fc,
    ave_expr,
    stat,
    pvalue,
    symbols: Optional[pd.Series] = None
) -> pd.DataFrame:
    """
    Assemble a ranked table of per-gene test results.

    Genes are ordered by p-value, ties broken by absolute statistic.
    Genes without a p-value are placed last.

    Returns:
        DataFrame with columns Gene, symbol, log2FC, AveExpr, stat, pvalue, padj
    """
    genes = pd.Index(genes)
    if symbols is None:
        symbol_values = np.full(len(genes), np.nan, dtype=object)
    else:
        symbol_values = pd.Series(symbols).reindex(genes).values

    table = pd.DataFrame({
        'Gene': genes.astype(str),
        'symbol': symbol_values,
        'log2FC': np.asarray(log2fc, dtype=float),
        'AveExpr': np.asarray(ave_expr, dtype=float),
        'stat': np.asarray(stat, dtype=float),
        'pvalue': np.asarray(pvalue, dtype=float),
    })
    table['padj'] = benjamini_hochberg(table['pvalue'].values)

    table['_abs_stat'] = table['stat'].abs()
    table = table.sort_values(
        ['pvalue', '_abs_stat'], ascending=[True, False],
        na_position='last', kind='mergesort'
    )
    return table.drop(columns='_abs_stat').reset_index(drop=True)


def decide_tests(
    table: pd.DataFrame,
    p_value: float = 0.05,
    lfc: float = 0.0,
    use_padj: bool = True
) -> pd.Series:
    """
    Classify each gene as down (-1), not significant (0) or up (1).

    Args:
        table: TopTable
        p_value: Significance cutoff
        lfc: Minimum absolute log2 fold change
        use_padj: Apply the cutoff to adjusted p-values

    Returns:
        Integer Series indexed by gene
    """
    pval = table['padj' if use_padj else 'pvalue'].fillna(1.0)
    significant = (pval <= p_value) & (table['log2FC'].abs() >= lfc)

    decision = np.where(significant, np.sign(table['log2FC']), 0).astype(int)
    return pd.Series(decision, index=table['Gene'].values, name='decision')


def summarize_decisions(decisions: Dict[str, pd.Series]) -> pd.DataFrame:
    """Counts of down, not significant and up genes per contrast."""
    rows = {}
    for name, decision in decisions.items():
        rows[name] = {
            'Down': int((decision == -1).sum()),
            'NotSig': int((decision == 0).sum()),
            'Up': int((decision == 1).sum()),
        }
    return pd.DataFrame(rows).T[['Down', 'NotSig', 'Up']]


class StrategyComparison:
    """Compare DE results of the same contrast across fitting strategies."""

    def __init__(
        self,
        log2fc_threshold: float = 0.0,
        pvalue_threshold: float = 0.05,
        use_padj: bool = True
    ):
        self.log2fc_threshold = log2fc_threshold
        self.pvalue_threshold = pvalue_threshold
        self.use_padj = use_padj

    def get_deg_sets(
        self,
        tables: Dict[str, pd.DataFrame],
        direction: str = 'both'
    ) -> Dict[str, Set[str]]:
        """
        Extract DE gene sets from the top table of each strategy.

        Args:
            tables: Dictionary of strategy name to TopTable
            direction: 'up', 'down', or 'both'

        Returns:
            Dictionary mapping strategy names to sets of gene identifiers
        """
        deg_sets = {}
        for name, df in tables.items():
            decision = decide_tests(
                df, p_value=self.pvalue_threshold,
                lfc=self.log2fc_threshold, use_padj=self.use_padj
            )
            if direction == 'up':
                mask = decision == 1
            elif direction == 'down':
                mask = decision == -1
            else:
                mask = decision != 0
            deg_sets[name] = set(decision.index[mask.values])

        return deg_sets

    def compute_overlaps(
        self,
        deg_sets: Dict[str, Set[str]]
    ) -> Dict[Tuple[str, ...], Set[str]]:
        """
        Compute exclusive overlaps between DE gene sets.

        Args:
            deg_sets: Dictionary of strategy names to gene sets

        Returns:
            Dictionary mapping strategy combinations to the genes called by
            exactly those strategies
        """
        names = list(deg_sets.keys())
        overlaps = {}

        for r in range(1, len(names) + 1):
            for combo in combinations(names, r):
                intersection = set.intersection(*[deg_sets[name] for name in combo])
                other_sets = [deg_sets[name] for name in names if name not in combo]
                if other_sets:
                    exclusive = intersection - set.union(*other_sets)
                else:
                    exclusive = intersection
                overlaps[combo] = exclusive

        return overlaps

    def get_concordance(
        self,
        tables: Dict[str, pd.DataFrame],
        strategy_a: str,
        strategy_b: str
    ) -> pd.DataFrame:
        """
        Merge the results of two strategies and classify each gene.

        Args:
            tables: Dictionary of strategy name to TopTable
            strategy_a: First strategy name
            strategy_b: Second strategy name

        Returns:
            Merged DataFrame with a Concordance column
        """
        cols = ['Gene', 'log2FC', 'pvalue', 'padj']
        df_a = tables[strategy_a][cols].copy()
        df_b = tables[strategy_b][cols].copy()

        df_a.columns = ['Gene'] + [f'{c}_{strategy_a}' for c in cols[1:]]
        df_b.columns = ['Gene'] + [f'{c}_{strategy_b}' for c in cols[1:]]

        merged = df_a.merge(df_b, on='Gene', how='inner')

        for name in (strategy_a, strategy_b):
            pval_col = f'padj_{name}' if self.use_padj else f'pvalue_{name}'
            merged[f'Sig_{name}'] = (
                (merged[f'log2FC_{name}'].abs() >= self.log2fc_threshold) &
                (merged[pval_col].fillna(1.0) <= self.pvalue_threshold)
            )

        sig_a, sig_b = merged[f'Sig_{strategy_a}'], merged[f'Sig_{strategy_b}']
        fc_a, fc_b = merged[f'log2FC_{strategy_a}'], merged[f'log2FC_{strategy_b}']

        conditions = [
            sig_a & sig_b & (fc_a > 0) & (fc_b > 0),
            sig_a & sig_b & (fc_a < 0) & (fc_b < 0),
            sig_a & sig_b & (fc_a * fc_b < 0),
            sig_a & ~sig_b,
            ~sig_a & sig_b,
        ]
        choices = [
            'Up in both',
            'Down in both',
            'Discordant',
            f'Sig in {strategy_a} only',
            f'Sig in {strategy_b} only'
        ]

        merged['Concordance'] = np.select(conditions, choices, default='Not significant')
        return merged

    def concordance_stats(self, tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        """
        Pairwise agreement statistics between strategies.

        Returns:
            One row per strategy pair with the log2FC correlation, the
            Spearman correlation of p-values, and the Jaccard index of the
            DE gene sets
        """
        deg_sets = self.get_deg_sets(tables)
        rows = []
        for a, b in combinations(tables.keys(), 2):
            merged = self.get_concordance(tables, a, b)
            union = deg_sets[a] | deg_sets[b]
            rows.append({
                'Strategy_A': a,
                'Strategy_B': b,
                'log2FC_pearson': merged[f'log2FC_{a}'].corr(merged[f'log2FC_{b}']),
                'pvalue_spearman': merged[f'pvalue_{a}'].corr(
                    merged[f'pvalue_{b}'], method='spearman'
                ),
                'DE_A': len(deg_sets[a]),
                'DE_B': len(deg_sets[b]),
                'DE_both': len(deg_sets[a] & deg_sets[b]),
                'Jaccard': len(deg_sets[a] & deg_sets[b]) / len(union) if union else np.nan,
            })
        return pd.DataFrame(rows)

    def export_summary(self, tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        """
        Wide table of every gene's results across strategies.

        Args:
            tables: Dictionary of strategy name to TopTable

        Returns:
            Summary DataFrame with per-strategy columns and the number of
            strategies calling each gene significant
        """
        summary = None
        sig_count = None

        for name, df in tables.items():
            decision = decide_tests(
                df, p_value=self.pvalue_threshold,
                lfc=self.log2fc_threshold, use_padj=self.use_padj
            )
            part = df.set_index('Gene')[['log2FC', 'pvalue', 'padj']].add_prefix(f'{name}_')
            part[f'{name}_Sig'] = decision.reindex(part.index).ne(0)

            summary = part if summary is None else summary.join(part, how='outer')
            sig = part[f'{name}_Sig'].astype(int)
            sig_count = sig if sig_count is None else sig_count.add(sig, fill_value=0)

        if summary is None:
            return pd.DataFrame()

        summary['Significant_in_N_strategies'] = sig_count.reindex(summary.index).fillna(0).astype(int)
        summary.index.name = 'Gene'
        return summary.reset_index()
