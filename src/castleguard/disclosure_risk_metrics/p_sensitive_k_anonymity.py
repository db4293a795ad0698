"""
P-sensitive k-anonymity of a released stream.

A streaming release is checked the same way a batch release is: group the
released records by their generalized QI values and look at the smallest
group. Relaxed records, released without the guarantee to honor the delay
bound, are excluded by default.
"""

from typing import Optional, Sequence, cast

import pandas as pd
from first import first  # type: ignore[import-untyped]

from castleguard.pandas_utils import make_temp_id_col


def calculate_p_k(
    released_df: pd.DataFrame,
    qids: Sequence[str],
    sens_attr: Optional[str] = "sensitive",
    exclude_relaxed: bool = True,
) -> tuple[Optional[int], Optional[int]]:
    """
    Calculate the p and k values of a release.

    Parameters
    ----------
    released_df : pd.DataFrame
        Released records, as built by ``outcomes_to_df``.
    qids : Sequence[str]
        Generalized QI columns defining the equivalence classes.
    sens_attr : str, optional, default "sensitive"
        Sensitive attribute column. If None only k is calculated.
    exclude_relaxed : bool, default True
        Drop rows whose ``relaxed`` column is True before measuring.

    Returns
    -------
    Tuple[Optional[int], Optional[int]]
        (p, k). p is None when ``sens_attr`` is None. Both are None when no
        rows remain after excluding relaxed records.

    Raises
    ------
    ValueError
        If ``released_df`` is empty or a named column is missing.

    Examples
    --------
    >>> df = pd.DataFrame({
    ...     'age': ['[1, 3]', '[1, 3]', '[9, 11]', '[9, 11]'],
    ...     'sensitive': ['A', 'B', 'A', 'B'],
    ...     'relaxed': [False, False, False, False],
    ... })
    >>> calculate_p_k(df, qids=['age'])
    (2, 2)
    """
    if len(released_df) == 0:
        raise ValueError("Released dataframe has no rows")
    cols = [str(col_name) for col_name in released_df.columns]
    qids = [qid_col for qid_col in qids if qid_col != sens_attr]
    for qid_col in qids:
        if qid_col not in cols:
            raise ValueError(f"QID col ({qid_col}) is not a column in the released dataframe")
    if sens_attr is not None and sens_attr not in cols:
        raise ValueError(
            f"Sensitive attribute col ({sens_attr}) is not a column in the released dataframe"
        )

    if exclude_relaxed and "relaxed" in cols:
        released_df = released_df[~released_df["relaxed"].astype(bool)]
    if len(released_df) == 0:
        return None, None

    keep = qids + ([sens_attr] if sens_attr is not None else [])
    released_df = released_df[keep].copy(deep=True)
    make_temp_id_col(released_df)

    if len(qids) > 0:
        actual_k = first(released_df.groupby(qids, dropna=False).count().min())
        if sens_attr is not None:
            actual_p: Optional[int] = int(
                cast(int, released_df.groupby(qids, dropna=False)[sens_attr].nunique().min())
            )
        else:
            actual_p = None
    else:
        actual_k = len(released_df)
        actual_p = int(released_df[sens_attr].nunique()) if sens_attr is not None else None

    return actual_p, int(cast(int, actual_k))
