"""
Pandas utility functions.

Adapters between DataFrames and the engine's tuple and outcome types. We
call this pandas_utils instead of pandas to avoid mistakes in import statements.
"""

from typing import Iterable, Iterator, Optional, Sequence

import numpy as np
import pandas as pd

from castleguard.constants import MAX_RANDOM_STATE
from castleguard.records import Emitted, Outcome, Suppressed

RECORD_COLUMNS: tuple[str, ...] = (
    "tuple_id",
    "arrival_index",
    "released_at",
    "cluster_id",
)
RELEASE_COLUMNS: tuple[str, ...] = (
    "sensitive",
    "cluster_size",
    "diversity",
    "information_loss",
    "relaxed",
    "reused",
)


def get_temp_col(
    input_df: pd.DataFrame,
    col_prefix: str = "id_col_",
    random_seed: int = 42,
    max_attempts: int = 10_000,
) -> str:
    """
    Get a unique temporary column name not in the given dataframe.

    Raises
    ------
    RuntimeError
        If unable to generate a unique column name after max_attempts.
    """
    cols = set(str(col_name) for col_name in input_df.columns)
    rng = np.random.default_rng(seed=random_seed)
    for _ in range(max_attempts):
        id_col = f"{col_prefix}_{rng.integers(0, MAX_RANDOM_STATE)}"
        if id_col not in cols:
            return id_col
    raise RuntimeError(
        f"Unable to generate unique column name after {max_attempts} attempts. "
        f"DataFrame may have too many existing columns with prefix '{col_prefix}_'."
    )


def make_temp_id_col(input_df: pd.DataFrame) -> str:
    """Insert a temporary column with row numbers (0-indexed); returns its name."""
    id_col = get_temp_col(input_df)
    input_df.insert(0, id_col, list(range(len(input_df))))  # type: ignore[reportArgumentType]  # pandas accepts list[int] but stubs are overly restrictive
    return id_col


def iter_stream_tuples(
    input_df: pd.DataFrame,
    qids: Sequence[str],
    sens_attr_col: str,
    id_col: Optional[str] = None,
    arrival_col: Optional[str] = None,
) -> Iterator[tuple]:
    """
    Turn DataFrame rows into raw ``(tuple_id, arrival_index, qi, sensitive)`` tuples.

    Rows are yielded in DataFrame order, ready for ``CastleGuard.run`` or
    ``CastleGuard.ingest``. Values are passed through unvalidated, so missing
    values surface as malformed tuples in the engine.

    Parameters
    ----------
    input_df : pd.DataFrame
        The stream as a table.
    qids : Sequence[str]
        QI columns, in the order the engine's attributes are configured.
    sens_attr_col : str
        Sensitive attribute column.
    id_col : str, optional
        Column holding tuple ids; the row index is used when None.
    arrival_col : str, optional
        Column holding arrival indexes; row positions (0, 1, ...) are used when None.

    Raises
    ------
    ValueError
        If a named column is missing from ``input_df``.
    """
    cols = [str(col_name) for col_name in input_df.columns]
    for col in list(qids) + [sens_attr_col] + [c for c in (id_col, arrival_col) if c is not None]:
        if col not in cols:
            raise ValueError(f"Column ({col}) is not a column in the input dataframe")
    tuple_ids = input_df[id_col].tolist() if id_col is not None else input_df.index.tolist()
    arrivals = (
        input_df[arrival_col].astype(int).tolist()
        if arrival_col is not None
        else list(range(len(input_df)))
    )
    qi_rows = input_df[list(qids)].itertuples(index=False, name=None)
    sensitive = input_df[sens_attr_col].tolist()
    for tuple_id, arrival_index, qi, sens in zip(tuple_ids, arrivals, qi_rows, sensitive):
        yield (tuple_id, arrival_index, list(qi), sens)


def outcomes_to_df(
    outcomes: Iterable[Outcome],
    attribute_names: Sequence[str],
    include_suppressed: bool = False,
) -> pd.DataFrame:
    """
    Tabulate outcomes, one row per record, QI ranges rendered as strings.

    Parameters
    ----------
    outcomes : Iterable[Outcome]
        Engine outcomes, in the order they were produced.
    attribute_names : Sequence[str]
        QI attribute names, used as column names.
    include_suppressed : bool, default False
        Whether to keep a row per suppressed tuple; such rows carry only the
        tuple id and ``suppressed = True``.

    Returns
    -------
    pd.DataFrame
        Columns: tuple_id, arrival_index, released_at, cluster_id, one column
        per QI attribute, sensitive, cluster_size, diversity,
        information_loss, relaxed, reused, and ``suppressed`` when
        ``include_suppressed`` is True.
    """
    columns = list(RECORD_COLUMNS) + list(attribute_names) + list(RELEASE_COLUMNS)
    rows = []
    for outcome in outcomes:
        if isinstance(outcome, Emitted):
            row = outcome.record.as_dict(attribute_names)
            if include_suppressed:
                row["suppressed"] = False
            rows.append(row)
        elif isinstance(outcome, Suppressed) and include_suppressed:
            rows.append({"tuple_id": outcome.tuple_id, "suppressed": True})
    if include_suppressed:
        columns.append("suppressed")
    return pd.DataFrame(rows, columns=columns)
