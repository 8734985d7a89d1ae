from __future__ import annotations

import logging
import re
import unicodedata
from pathlib import Path
from typing import Iterable

import anndata as ad
import numpy as np
import pandas as pd

from .config import (
    GENE_ID_COL,
    GENE_NAME_COL,
    REQUIRED_METADATA_COLS,
    SAMPLE_COL,
    TRANSCRIPT_COLS,
)
from .errors import MissingColumnError, SampleMismatchError
from .gene_mapping import IdentifierMap

logger = logging.getLogger(__name__)

VERSION_SUFFIX = re.compile(r"\.\d+(_PAR_Y)?$")


def strip_version(gene_ids: Iterable[str]) -> pd.Index:
    """Remove Ensembl version suffixes, e.g. ``ENSG00000000003.14`` -> ``ENSG00000000003``."""
    return pd.Index([VERSION_SUFFIX.sub("", str(gid)) for gid in gene_ids], name=GENE_ID_COL)


def deduplicate_genes(counts: pd.DataFrame) -> pd.DataFrame:
    """Keep the first row of every repeated gene id.

    Args:
        counts (pd.DataFrame): Count matrix indexed by gene id.

    Returns:
        pd.DataFrame: Count matrix with a unique index, original row order kept.
    """
    duplicated = counts.index.duplicated(keep="first")
    if duplicated.any():
        logger.info("Dropping %d duplicated gene ids (first occurrence kept)", int(duplicated.sum()))
    return counts.loc[~duplicated]


def read_count_matrix(path: Path) -> pd.DataFrame:
    """Read a tab-delimited gene count table.

    The file carries a ``gene_id`` column, a transcript id column and one
    column per sample. Version suffixes are stripped from the gene ids,
    the transcript column is removed, counts are rounded to integers and
    repeated gene ids are collapsed to their first row.

    Args:
        path (Path): Tab-delimited count file.

    Returns:
        pd.DataFrame: Integer counts with genes as rows and samples as columns.
    """
    df = pd.read_csv(path, sep="\t")
    if GENE_ID_COL not in df.columns:
        raise MissingColumnError(str(path), [GENE_ID_COL])

    df = df.drop(columns=[c for c in TRANSCRIPT_COLS if c in df.columns])
    df.index = strip_version(df.pop(GENE_ID_COL))

    counts = df.apply(pd.to_numeric).round().astype(np.int64)
    counts = deduplicate_genes(counts)
    counts.columns = counts.columns.astype(str)
    logger.info("Loaded counts for %d genes x %d samples from %s", *counts.shape, path)
    return counts


def read_sample_metadata(path: Path) -> pd.DataFrame:
    """Read the sample sheet (xlsx, csv or tsv) indexed by sample id."""
    path = Path(path)
    if path.suffix in (".xlsx", ".xls"):
        metadata = pd.read_excel(path, dtype={SAMPLE_COL: str})
    else:
        sep = "\t" if path.suffix in (".tsv", ".txt") else ","
        metadata = pd.read_csv(path, sep=sep, dtype={SAMPLE_COL: str})

    metadata.columns = [str(c).strip() for c in metadata.columns]
    missing = [c for c in REQUIRED_METADATA_COLS if c not in metadata.columns]
    if missing:
        raise MissingColumnError(str(path), missing)

    metadata[SAMPLE_COL] = metadata[SAMPLE_COL].str.strip()
    metadata = metadata.set_index(SAMPLE_COL)
    logger.info("Loaded metadata for %d samples from %s", len(metadata), path)
    return metadata


def _normalize_label(value: object) -> object:
    if pd.isna(value):
        return value
    text = unicodedata.normalize("NFKC", str(value))
    return " ".join(text.split())


def harmonize_categories(metadata: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Normalize categorical text encodings in place of the given columns.

    Labels are NFKC-normalized, trimmed and whitespace-collapsed; spellings
    that differ only by case are folded onto the most frequent one (ties
    go to the first spelling seen).

    Args:
        metadata (pd.DataFrame): Sample metadata.
        columns (Iterable[str]): Covariate columns to harmonize.

    Returns:
        pd.DataFrame: Copy of ``metadata`` with categorical dtype columns.
    """
    metadata = metadata.copy()
    for col in columns:
        if col not in metadata.columns:
            raise MissingColumnError("sample metadata", [col])
        values = metadata[col].map(_normalize_label)
        spellings: dict[str, list[str]] = {}
        for value in values.dropna():
            spellings.setdefault(value.casefold(), []).append(value)
        canonical = {
            key: max(dict.fromkeys(variants), key=variants.count)
            for key, variants in spellings.items()
        }
        metadata[col] = values.map(
            lambda v: canonical[v.casefold()] if isinstance(v, str) else v
        ).astype("category")
    return metadata


def align_samples(counts: pd.DataFrame, metadata: pd.DataFrame) -> pd.DataFrame:
    """Reorder count columns to the metadata row order.

    Args:
        counts (pd.DataFrame): Genes x samples count matrix.
        metadata (pd.DataFrame): Sample metadata indexed by sample id.

    Returns:
        pd.DataFrame: ``counts`` with columns in ``metadata.index`` order.

    Raises:
        SampleMismatchError: If either side has samples the other lacks or
            a sample id is repeated.
    """
    duplicated = sorted(
        set(metadata.index[metadata.index.duplicated()]) | set(counts.columns[counts.columns.duplicated()])
    )
    missing_in_counts = sorted(set(metadata.index) - set(counts.columns))
    missing_in_metadata = sorted(set(counts.columns) - set(metadata.index))
    if duplicated or missing_in_counts or missing_in_metadata:
        raise SampleMismatchError(missing_in_counts, missing_in_metadata, duplicated)

    return counts.loc[:, list(metadata.index)]


def apply_identifier_map(
    counts: pd.DataFrame, id_map: IdentifierMap
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Keep genes with a symbol and build the gene annotation table.

    Returns:
        tuple[pd.DataFrame, pd.DataFrame]: Filtered counts and a ``gene_name``
        annotation frame sharing the same index.
    """
    symbols = id_map.symbols(counts.index)
    mapped = symbols.notna().to_numpy()
    n_dropped = int((~mapped).sum())
    if n_dropped:
        logger.warning("Dropping %d of %d genes without a symbol", n_dropped, len(counts))

    counts = counts.loc[mapped]
    gene_annotations = pd.DataFrame({GENE_NAME_COL: symbols[mapped].to_numpy()}, index=counts.index)
    return counts, gene_annotations


def build_anndata(
    counts: pd.DataFrame, metadata: pd.DataFrame, gene_annotations: pd.DataFrame
) -> ad.AnnData:
    """Samples x genes AnnData with metadata in ``obs`` and annotations in ``var``."""
    return ad.AnnData(
        X=counts.T.to_numpy(dtype=np.int64),
        obs=metadata.loc[counts.columns].copy(),
        var=gene_annotations.loc[counts.index].copy(),
    )
