"""
Design matrices and contrasts.
"""

import ast
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import ContrastError, DesignError


def design_matrix(
    samples: pd.DataFrame,
    block: Sequence[str] = (),
    levels: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Build a group-means design matrix.

    One indicator column per group level (no intercept), followed by
    treatment-coded columns for each additive blocking covariate.

    Args:
        samples: Sample metadata with a ``group`` column
        block: Additional covariate columns (e.g. batch)
        levels: Expected group levels; defaults to the sorted observed levels

    Returns:
        Samples x coefficients float DataFrame
    """
    if levels is None:
        levels = sorted(samples['group'].unique())

    group = pd.Categorical(samples['group'], categories=list(levels))
    if group.isna().any():
        unknown = sorted(set(samples['group'][group.isna()]))
        raise DesignError(f"Samples belong to groups outside the design: {unknown}")

    design = pd.get_dummies(group, dtype=float)
    design.index = samples.index

    for col in block:
        if col not in samples.columns:
            raise DesignError(f"Blocking covariate '{col}' not in sample metadata")
        dummies = pd.get_dummies(samples[col].astype(str), drop_first=True, dtype=float)
        dummies.columns = [_safe_name(f'{col}_{level}') for level in dummies.columns]
        design = pd.concat([design, dummies], axis=1)

    design.columns = [str(c) for c in design.columns]
    return design


def check_design(design: pd.DataFrame) -> int:
    """
    Verify that every coefficient is estimable.

    Args:
        design: Samples x coefficients design matrix

    Returns:
        Residual degrees of freedom

    Raises:
        DesignError: For empty groups, rank deficiency or no residual df
    """
    X = np.asarray(design, dtype=float)
    n, p = X.shape

    empty = [c for c, col in zip(design.columns, X.T) if not np.any(col != 0)]
    if empty:
        raise DesignError(f"Design columns with zero samples: {empty}")

    rank = np.linalg.matrix_rank(X)
    if rank < p:
        raise DesignError(
            f"Design matrix is not of full rank ({rank} < {p}); "
            f"coefficients are not estimable"
        )

    df_residual = n - p
    if df_residual < 1:
        raise DesignError(
            f"No residual degrees of freedom ({n} samples, {p} coefficients); "
            f"replicates are needed"
        )
    return df_residual


@dataclass(frozen=True)
class Contrast:
    """A named linear combination of design coefficients."""

    name: str
    vector: pd.Series

    def negate(self) -> 'Contrast':
        return Contrast(name=f'-({self.name})', vector=-self.vector)

    def values(self, design: pd.DataFrame) -> np.ndarray:
        """Contrast coefficients aligned to the columns of ``design``."""
        missing = [c for c in self.vector.index if c not in design.columns]
        if missing:
            raise ContrastError(f"Contrast '{self.name}' uses unknown columns: {missing}")
        return self.vector.reindex(design.columns, fill_value=0.0).values.astype(float)


def parse_contrast(expression: str, columns: Sequence[str], name: Optional[str] = None) -> Contrast:
    """
    Parse an expression such as ``"(B_x + B_y)/2 - A_x"`` into a contrast.

    Args:
        expression: Arithmetic expression over design column names
        columns: Design column names
        name: Contrast name (defaults to the expression)

    Returns:
        Contrast over ``columns``
    """
    columns = list(columns)
    try:
        tree = ast.parse(expression, mode='eval')
    except SyntaxError as e:
        raise ContrastError(f"Cannot parse contrast '{expression}': {e.msg}")

    value = _evaluate(tree.body, columns, expression)
    if np.isscalar(value):
        raise ContrastError(f"Contrast '{expression}' does not reference any design column")
    if np.allclose(value, 0):
        raise ContrastError(f"Contrast '{expression}' is zero")

    return Contrast(
        name=name or expression,
        vector=pd.Series(value, index=columns, dtype=float)
    )


def make_contrasts(design: pd.DataFrame, contrasts: Dict[str, str]) -> List[Contrast]:
    """Parse a mapping of contrast name to expression against a design."""
    return [
        parse_contrast(expr, design.columns, name=name)
        for name, expr in contrasts.items()
    ]


def _evaluate(node, columns: List[str], expression: str):
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return float(node.value)

    if isinstance(node, ast.Name):
        if node.id not in columns:
            raise ContrastError(
                f"Unknown design column '{node.id}' in contrast '{expression}'. "
                f"Available: {columns}"
            )
        unit = np.zeros(len(columns))
        unit[columns.index(node.id)] = 1.0
        return unit

    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
        operand = _evaluate(node.operand, columns, expression)
        return -operand if isinstance(node.op, ast.USub) else operand

    if isinstance(node, ast.BinOp):
        left = _evaluate(node.left, columns, expression)
        right = _evaluate(node.right, columns, expression)

        if isinstance(node.op, ast.Add):
            return left + right
        if isinstance(node.op, ast.Sub):
            return left - right
        if isinstance(node.op, ast.Mult):
            if not (np.isscalar(left) or np.isscalar(right)):
                raise ContrastError(f"Contrast '{expression}' is not linear")
            return left * right
        if isinstance(node.op, ast.Div):
            if not np.isscalar(right):
                raise ContrastError(f"Contrast '{expression}' divides by a design column")
            if right == 0:
                raise ContrastError(f"Division by zero in contrast '{expression}'")
            return left / right

    raise ContrastError(f"Unsupported syntax in contrast '{expression}'")


def _safe_name(name: str) -> str:
    name = re.sub(r'\W+', '_', name).strip('_')
    if not name or name[0].isdigit():
        name = f'x{name}'
    return name
