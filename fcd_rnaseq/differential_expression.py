from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Optional

import anndata as ad
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from pydeseq2.ds import DeseqStats

from .config import (
    DOWN,
    GENE_NAME_COL,
    LOG2FC_COL,
    NOT_SIGNIFICANT,
    PADJ_COL,
    SIGNIFICANCE_COL,
    SIGNIFICANT,
    STATUS_COL,
    STATUS_PALETTE,
    UP,
)

logger = logging.getLogger(__name__)


def prefilter_mask(counts: pd.DataFrame, min_count: int = 10, min_samples: int = 5) -> pd.Series:
    """Boolean mask of genes with at least ``min_count`` reads in ``min_samples`` samples.

    Args:
        counts (pd.DataFrame): Genes x samples count matrix.
        min_count (int): Minimum count for a sample to support a gene.
        min_samples (int): Minimum number of supporting samples.

    Returns:
        pd.Series: Boolean keep flag per gene.
    """
    return (counts >= min_count).sum(axis=1) >= min_samples


def prefilter_genes(counts: pd.DataFrame, min_count: int = 10, min_samples: int = 5) -> pd.DataFrame:
    """Drop low-count genes before fitting.

    Args:
        counts (pd.DataFrame): Genes x samples count matrix.
        min_count (int): Minimum count for a sample to support a gene.
        min_samples (int): Minimum number of supporting samples.

    Returns:
        pd.DataFrame: Rows of ``counts`` passing ``prefilter_mask``, in input order.
    """
    keep = prefilter_mask(counts, min_count=min_count, min_samples=min_samples)
    logger.info(
        "Pre-filter (count >= %d in >= %d samples) kept %d of %d genes",
        min_count,
        min_samples,
        int(keep.sum()),
        len(keep),
    )
    return counts.loc[keep]


def fit_model(
    adata: ad.AnnData,
    design: str,
    fit_type: str = "parametric",
    refit_cooks: bool = True,
    n_cpus: int = 1,
) -> DeseqDataSet:
    """Fit the negative-binomial GLM on raw counts.

    Args:
        adata (ad.AnnData): Samples x genes counts with covariates in ``obs``.
        design (str): Additive design formula, e.g. ``"~lobe + diagnosis"``.
        fit_type (str): Dispersion trend type, ``"parametric"`` or ``"mean"``.
        refit_cooks (bool): Refit genes flagged as Cook's distance outliers.
        n_cpus (int): Worker processes used by PyDESeq2.

    Returns:
        DeseqDataSet: Fitted dataset with size factors, dispersions and LFCs.
    """
    dds = DeseqDataSet(
        adata=adata,
        design=design,
        fit_type=fit_type,
        refit_cooks=refit_cooks,
        inference=DefaultInference(n_cpus=n_cpus),
        quiet=True,
    )
    logger.info("Running DESeq2 with design %s on %d samples x %d genes", design, *adata.shape)
    dds.deseq2()
    return dds


def normalized_counts(dds: DeseqDataSet) -> pd.DataFrame:
    """Size-factor normalized counts, genes x samples."""
    return pd.DataFrame(
        np.asarray(dds.layers["normed_counts"]), index=dds.obs_names, columns=dds.var_names
    ).T


def extract_contrast(
    dds: DeseqDataSet,
    contrast: tuple[str, str, str],
    alpha: float = 0.1,
    n_cpus: int = 1,
) -> pd.DataFrame:
    """Run the Wald test for ``(factor, tested_level, reference_level)``."""
    stat_res = DeseqStats(
        dds,
        contrast=list(contrast),
        alpha=alpha,
        inference=DefaultInference(n_cpus=n_cpus),
        quiet=True,
    )
    stat_res.summary()
    return stat_res.results_df.copy()


def annotate_results(results: pd.DataFrame, gene_annotations: pd.DataFrame) -> pd.DataFrame:
    """Attach ``gene_name`` to per-gene results; genes without one get NaN."""
    return results.join(gene_annotations[[GENE_NAME_COL]], how="left")


def classify_results(results: pd.DataFrame, alpha: float = 0.1, fold_change: float = 1.5) -> pd.DataFrame:
    """Label genes by significance and direction.

    A gene is significant when ``padj < alpha`` and ``|log2FoldChange|`` is
    above ``log2(fold_change)``. Missing adjusted p-values count as not
    significant.

    Args:
        results (pd.DataFrame): Per-gene results with ``log2FoldChange`` and ``padj``.
        alpha (float): Adjusted p-value threshold.
        fold_change (float): Linear fold-change threshold (1.5 -> log2(1.5)).

    Returns:
        pd.DataFrame: Copy of ``results`` with ``significance`` and ``Status``
        columns, sorted by ``padj``.
    """
    cutoff = math.log2(fold_change)
    res = results.copy()
    lfc = res[LOG2FC_COL]
    passes_padj = (res[PADJ_COL] < alpha).fillna(False).astype(bool)
    up = passes_padj & (lfc > cutoff)
    down = passes_padj & (lfc < -cutoff)

    res[SIGNIFICANCE_COL] = np.where(up | down, SIGNIFICANT, NOT_SIGNIFICANT)
    res[STATUS_COL] = np.select([up, down], [UP, DOWN], default=NOT_SIGNIFICANT)
    return res.sort_values(PADJ_COL, na_position="last", kind="mergesort")


def significant_genes(results: pd.DataFrame) -> pd.DataFrame:
    """Rows of classified results marked significant, in either direction."""
    return results[results[SIGNIFICANCE_COL] == SIGNIFICANT]


def upregulated_genes(results: pd.DataFrame) -> pd.DataFrame:
    """Rows of classified results with status up-regulated."""
    return results[results[STATUS_COL] == UP]


def save_volcano_plot(
    results: pd.DataFrame,
    out_path: Path,
    alpha: float = 0.1,
    fold_change: float = 1.5,
    label_cutoff: float = 2.5,
    title: Optional[str] = None,
) -> None:
    """Save a volcano plot of log2 fold change against -log10 adjusted p-value.

    Args:
        results (pd.DataFrame): Classified results (see ``classify_results``).
        out_path (Path): Output figure path; the suffix selects the format.
        alpha (float): Adjusted p-value threshold drawn as a horizontal line.
        fold_change (float): Linear fold-change threshold drawn as vertical lines.
        label_cutoff (float): Only significant genes with ``|log2FC|`` above
            this value get a text label.
        title (Optional[str]): Plot title.

    Returns:
        None: Writes the figure to ``out_path``.
    """
    cutoff = math.log2(fold_change)
    volcano_data = results.dropna(subset=[LOG2FC_COL, PADJ_COL]).copy()
    volcano_data["neg_log10_padj"] = -np.log10(volcano_data[PADJ_COL].clip(lower=np.finfo(float).tiny))

    plt.figure(figsize=(10, 8))
    sns.scatterplot(
        data=volcano_data,
        x=LOG2FC_COL,
        y="neg_log10_padj",
        hue=STATUS_COL,
        hue_order=[UP, DOWN, NOT_SIGNIFICANT],
        palette=STATUS_PALETTE,
        s=10,
        edgecolor=None,
        alpha=0.7,
    )

    plt.axhline(-np.log10(alpha), ls="--", color="black", alpha=0.3)
    plt.axvline(cutoff, ls="--", color="black", alpha=0.3)
    plt.axvline(-cutoff, ls="--", color="black", alpha=0.3)

    if not volcano_data.empty:
        xmax = max(np.ceil(volcano_data[LOG2FC_COL].abs().max()), 1.0)
        plt.xlim(-xmax, xmax)

    to_label = volcano_data[
        (volcano_data[STATUS_COL] != NOT_SIGNIFICANT) & (volcano_data[LOG2FC_COL].abs() > label_cutoff)
    ]
    for gene_id, row in to_label.iterrows():
        label = row.get(GENE_NAME_COL)
        plt.text(
            row[LOG2FC_COL] + 0.05,
            row["neg_log10_padj"],
            label if isinstance(label, str) else str(gene_id),
            fontsize=6,
        )

    plt.title(title or "Volcano plot", fontsize=16)
    plt.xlabel("log2 Fold Change", fontsize=14)
    plt.ylabel("-log10(Adjusted P-value)", fontsize=14)
    plt.grid(alpha=0.3)
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()
    logger.info("Volcano plot written to %s (%d labelled genes)", out_path, len(to_label))
