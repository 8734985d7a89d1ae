from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import pandas as pd

logger = logging.getLogger(__name__)


def write_table(
    df: pd.DataFrame,
    path: Path,
    sep: str = ",",
    index: bool = True,
    decimals: Optional[int] = None,
) -> Path:
    """Write ``df`` to a delimited file, overwriting any existing file.

    Args:
        df (pd.DataFrame): Table to write.
        path (Path): Destination; parent directories are created.
        sep (str): Field delimiter.
        index (bool): Write the row index as the first column.
        decimals (Optional[int]): Round float columns to this many decimals.

    Returns:
        Path: The written path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if decimals is not None:
        df = df.round(decimals)
    df.to_csv(path, sep=sep, index=index)
    logger.info("Wrote %d rows to %s", len(df), path)
    return path


def read_table(path: Path, sep: str = ",", index_col: Optional[int] = 0) -> pd.DataFrame:
    return pd.read_csv(path, sep=sep, index_col=index_col)
