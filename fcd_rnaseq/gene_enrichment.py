"""GO enrichment of differential expression results with GSEApy.

Two modes are supported: GSEA prerank over every tested gene ordered by
effect size, and over-representation analysis (ORA) of a thresholded gene
list against the tested genes as background. Results can be reduced to
non-redundant terms with ``simplify_terms``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import gseapy as gp
import pandas as pd

from .config import GENE_NAME_COL, LOG2FC_COL, STATUS_COL, UP

logger = logging.getLogger(__name__)

PRERANK_TERM_COL = "Term"
PRERANK_GENES_COL = "Lead_genes"
PRERANK_PVAL_COL = "FDR q-val"
ORA_TERM_COL = "Term"
ORA_GENES_COL = "Genes"
ORA_PVAL_COL = "Adjusted P-value"


def load_gene_sets(source: str, organism: str = "Human") -> dict[str, list[str]]:
    """Resolve a gene set source to a ``{term: genes}`` dictionary.

    Args:
        source (str): Path to a GMT file, or an Enrichr library name such as
            ``GO_Biological_Process_2023``.
        organism (str): Organism passed to Enrichr for library downloads.

    Returns:
        dict[str, list[str]]: Gene sets keyed by term.
    """
    path = Path(source)
    if path.suffix == ".gmt" and path.exists():
        gene_sets = gp.read_gmt(str(path))
    else:
        gene_sets = gp.get_library(name=source, organism=organism)
    logger.info("Loaded %d gene sets from %s", len(gene_sets), source)
    return gene_sets


def build_ranked_list(results: pd.DataFrame, metric: str = LOG2FC_COL) -> pd.DataFrame:
    """Rank all tested genes by ``metric``.

    Genes without a symbol or metric are removed and repeated symbols keep
    their maximum value. No significance threshold is applied.

    Args:
        results (pd.DataFrame): Annotated differential expression results.
        metric (str): Column used for ranking.

    Returns:
        pd.DataFrame: Two columns (``gene_name``, ``metric``) sorted descending.
    """
    ranked_list = results.dropna(subset=[GENE_NAME_COL, metric])[[GENE_NAME_COL, metric]].copy()
    ranked_list[GENE_NAME_COL] = ranked_list[GENE_NAME_COL].astype(str)
    ranked_list = ranked_list.groupby(GENE_NAME_COL, as_index=False)[metric].max()
    return ranked_list.sort_values(metric, ascending=False, kind="mergesort").reset_index(drop=True)


def select_ora_genes(results: pd.DataFrame, status: str = UP) -> list[str]:
    """Unique symbols of genes with the given ``Status``."""
    subset = results[results[STATUS_COL] == status].dropna(subset=[GENE_NAME_COL])
    return subset[GENE_NAME_COL].astype(str).unique().tolist()


def run_prerank(
    ranked_list: pd.DataFrame,
    gene_sets: dict[str, list[str]],
    min_size: int = 15,
    max_size: int = 500,
    permutation_num: int = 1000,
    seed: int = 42,
    threads: int = 1,
) -> pd.DataFrame:
    """Run GSEA prerank and return the ``res2d`` table."""
    logger.info("Running GSEA prerank on %d ranked genes", len(ranked_list))
    pre_res = gp.prerank(
        rnk=ranked_list,
        gene_sets=gene_sets,
        outdir=None,
        seed=seed,
        min_size=min_size,
        max_size=max_size,
        permutation_num=permutation_num,
        threads=threads,
        verbose=False,
    )
    return pre_res.res2d.copy()


def run_ora(
    gene_list: list[str],
    gene_sets: dict[str, list[str]],
    background: list[str],
    cutoff: float = 0.05,
) -> pd.DataFrame:
    """Hypergeometric over-representation of ``gene_list`` in ``gene_sets``.

    Args:
        gene_list (list[str]): Thresholded gene symbols, e.g. up-regulated genes.
        gene_sets (dict[str, list[str]]): Gene sets keyed by term.
        background (list[str]): Symbols of every tested gene.
        cutoff (float): Adjusted p-value cutoff used by GSEApy for reporting.

    Returns:
        pd.DataFrame: Enrichr-style result table, one row per term.
    """
    logger.info("Running ORA on %d genes against %d background genes", len(gene_list), len(background))
    enr = gp.enrichr(
        gene_list=gene_list,
        gene_sets=gene_sets,
        background=background,
        outdir=None,
        cutoff=cutoff,
        verbose=False,
    )
    return enr.results.copy()


def split_genes(cell: object, sep: str = ";") -> list[str]:
    if not isinstance(cell, str):
        return []
    return [g.strip() for g in cell.split(sep) if g.strip()]


def simplify_terms(
    results: pd.DataFrame,
    genes_col: str,
    pval_col: str,
    cutoff: float = 0.7,
    sep: str = ";",
) -> pd.DataFrame:
    """Drop redundant terms whose genes largely overlap a better-scoring term.

    Terms are visited by ascending ``pval_col``. A term is kept unless the
    Jaccard similarity between its genes and the genes of an already kept
    term is at least ``cutoff``.

    Args:
        results (pd.DataFrame): Enrichment results.
        genes_col (str): Column with ``sep``-separated member genes.
        pval_col (str): Column used to order terms (smaller is better).
        cutoff (float): Similarity at or above which a term is redundant.
        sep (str): Gene separator inside ``genes_col``.

    Returns:
        pd.DataFrame: Subset of ``results`` in ascending ``pval_col`` order.
    """
    if not 0 < cutoff <= 1:
        raise ValueError(f"cutoff must be in (0, 1], got {cutoff}")

    ordered = results.sort_values(pval_col, kind="mergesort", na_position="last")
    kept_labels = []
    kept_sets: list[set[str]] = []
    for label, cell in ordered[genes_col].items():
        genes = set(split_genes(cell, sep))
        redundant = False
        for other in kept_sets:
            union = genes | other
            if union and len(genes & other) / len(union) >= cutoff:
                redundant = True
                break
        if not redundant:
            kept_labels.append(label)
            kept_sets.append(genes)

    logger.info("Simplified %d terms to %d (similarity cutoff %.2f)", len(results), len(kept_labels), cutoff)
    return ordered.loc[kept_labels]


def enrichment_background(results: pd.DataFrame) -> list[str]:
    return results[GENE_NAME_COL].dropna().astype(str).unique().tolist()


def prerank_or_none(
    results: pd.DataFrame,
    gene_sets: dict[str, list[str]],
    metric: str = LOG2FC_COL,
    **kwargs,
) -> Optional[pd.DataFrame]:
    ranked_list = build_ranked_list(results, metric=metric)
    if ranked_list.empty:
        logger.warning("No ranked genes available, skipping GSEA prerank")
        return None
    return run_prerank(ranked_list, gene_sets, **kwargs)


def ora_or_none(
    results: pd.DataFrame,
    gene_sets: dict[str, list[str]],
    status: str = UP,
    cutoff: float = 0.05,
) -> Optional[pd.DataFrame]:
    gene_list = select_ora_genes(results, status=status)
    if not gene_list:
        logger.warning("No %s genes, skipping ORA", status)
        return None
    return run_ora(gene_list, gene_sets, background=enrichment_background(results), cutoff=cutoff)
