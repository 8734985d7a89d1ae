"""Term-gene edge tables for network views of enrichment results."""

from __future__ import annotations

from typing import Optional

import pandas as pd

from .config import GENE_NAME_COL, LOG2FC_COL

SOURCE_COL = "term"
TARGET_COL = "gene"


def term_gene_edges(
    results: pd.DataFrame,
    term_col: str,
    genes_col: str,
    de_results: Optional[pd.DataFrame] = None,
    sep: str = ";",
) -> pd.DataFrame:
    """Explode multi-gene cells into one row per (term, gene) pair.

    Args:
        results (pd.DataFrame): Enrichment results with a term column and a
            ``sep``-separated gene column.
        term_col (str): Term column name.
        genes_col (str): Gene list column name.
        de_results (Optional[pd.DataFrame]): Differential expression results;
            when given, each edge gets the gene's ``log2FoldChange``.
        sep (str): Gene separator.

    Returns:
        pd.DataFrame: Edge table with ``term`` and ``gene`` columns.
    """
    edges = (
        results[[term_col, genes_col]]
        .dropna(subset=[genes_col])
        .assign(**{TARGET_COL: lambda df: df[genes_col].astype(str).str.split(sep)})
        .explode(TARGET_COL)
        .rename(columns={term_col: SOURCE_COL})
        [[SOURCE_COL, TARGET_COL]]
    )
    edges[TARGET_COL] = edges[TARGET_COL].str.strip()
    edges = edges[edges[TARGET_COL] != ""].drop_duplicates().reset_index(drop=True)

    if de_results is not None:
        lfc = (
            de_results[[GENE_NAME_COL, LOG2FC_COL]]
            .dropna(subset=[GENE_NAME_COL])
            .drop_duplicates(subset=[GENE_NAME_COL])
            .set_index(GENE_NAME_COL)
        )
        edges = edges.join(lfc, on=TARGET_COL, how="left")
    return edges


def edge_nodes(edges: pd.DataFrame) -> pd.DataFrame:
    """Node table (``node``, ``type``, ``degree``) for an edge table."""
    terms = edges[SOURCE_COL].value_counts().rename_axis("node").reset_index(name="degree")
    terms["type"] = "term"
    genes = edges[TARGET_COL].value_counts().rename_axis("node").reset_index(name="degree")
    genes["type"] = "gene"
    return pd.concat([terms, genes], ignore_index=True)[["node", "type", "degree"]]
