"""Gene accession to symbol mapping.

Symbols come either from a local two-column table or from the MyGene.info
service. Accessions that resolve to more than one distinct symbol are
treated as ambiguous and dropped; several accessions may share a symbol.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import mygene
import pandas as pd

from .config import GENE_ID_COL, GENE_NAME_COL
from .errors import MissingColumnError

logger = logging.getLogger(__name__)

MYGENE_CHUNK_SIZE = 1000


class IdentifierMap:
    """Deduplicated accession -> symbol mapping.

    Args:
        table (pd.DataFrame): Table with ``gene_id`` and ``gene_name`` columns.
            Rows with missing or empty symbols are removed, repeated
            (accession, symbol) pairs collapse to one row and accessions
            mapped to several different symbols are dropped.
    """

    def __init__(self, table: pd.DataFrame) -> None:
        missing = [c for c in (GENE_ID_COL, GENE_NAME_COL) if c not in table.columns]
        if missing:
            raise MissingColumnError("identifier map", missing)

        pairs = table[[GENE_ID_COL, GENE_NAME_COL]].dropna().astype(str)
        pairs[GENE_ID_COL] = pairs[GENE_ID_COL].str.strip()
        pairs[GENE_NAME_COL] = pairs[GENE_NAME_COL].str.strip()
        pairs = pairs[(pairs[GENE_ID_COL] != "") & (pairs[GENE_NAME_COL] != "")]
        pairs = pairs.drop_duplicates()

        n_symbols = pairs.groupby(GENE_ID_COL)[GENE_NAME_COL].transform("nunique")
        ambiguous = pairs.loc[n_symbols > 1, GENE_ID_COL].unique()
        if len(ambiguous):
            logger.info("Dropping %d ambiguous accessions mapped to several symbols", len(ambiguous))
        pairs = pairs[n_symbols == 1]

        self._symbols = pairs.set_index(GENE_ID_COL)[GENE_NAME_COL]

    @classmethod
    def from_table(cls, path: Path, sep: str | None = None) -> "IdentifierMap":
        """Load a mapping from a delimited file with ``gene_id``/``gene_name`` columns."""
        path = Path(path)
        if sep is None:
            sep = "," if path.suffix == ".csv" else "\t"
        return cls(pd.read_csv(path, sep=sep, dtype=str))

    @classmethod
    def from_mygene(cls, gene_ids: Iterable[str], species: str = "human") -> "IdentifierMap":
        """Query MyGene.info for Ensembl gene symbols.

        Args:
            gene_ids (Iterable[str]): Unversioned Ensembl gene accessions.
            species (str): Species name understood by MyGene.info.

        Returns:
            IdentifierMap: Mapping for every accession the service resolved.
        """
        ids = list(dict.fromkeys(gene_ids))
        mg = mygene.MyGeneInfo()
        frames = []
        for start in range(0, len(ids), MYGENE_CHUNK_SIZE):
            chunk = ids[start:start + MYGENE_CHUNK_SIZE]
            res = mg.querymany(
                chunk,
                scopes="ensembl.gene",
                fields="symbol",
                species=species,
                as_dataframe=True,
                df_index=True,
                verbose=False,
            )
            if "notfound" in res.columns:
                res = res[res["notfound"] != True]  # noqa: E712
            if "symbol" in res.columns:
                frames.append(
                    pd.DataFrame({GENE_ID_COL: res.index.astype(str), GENE_NAME_COL: res["symbol"].values})
                )
        logger.info("MyGene.info resolved %d of %d accessions", sum(len(f) for f in frames), len(ids))
        if not frames:
            return cls(pd.DataFrame(columns=[GENE_ID_COL, GENE_NAME_COL]))
        return cls(pd.concat(frames, ignore_index=True))

    def __len__(self) -> int:
        return len(self._symbols)

    def __contains__(self, gene_id: object) -> bool:
        return gene_id in self._symbols.index

    def symbols(self, gene_ids: Iterable[str]) -> pd.Series:
        """Symbol per accession, NaN where unmapped."""
        index = pd.Index(list(gene_ids), name=GENE_ID_COL)
        return self._symbols.reindex(index).rename(GENE_NAME_COL)

    def to_frame(self) -> pd.DataFrame:
        return self._symbols.rename(GENE_NAME_COL).reset_index()
