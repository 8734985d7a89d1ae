from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from pydeseq2.dds import DeseqDataSet
from scipy.cluster import hierarchy
from scipy.spatial.distance import squareform
from sklearn.decomposition import PCA
from sklearn.metrics import pairwise_distances

from .config import CATEGORY_PALETTES

logger = logging.getLogger(__name__)


def variance_stabilize(dds: DeseqDataSet, fit_type: str = "parametric") -> pd.DataFrame:
    """Variance-stabilized counts from a fitted dataset, samples x genes.

    Args:
        dds (DeseqDataSet): Dataset on which ``deseq2()`` already ran.
        fit_type (str): Dispersion trend used by the transform.

    Returns:
        pd.DataFrame: VST values indexed by sample with gene columns.
    """
    dds.vst(use_design=False, fit_type=fit_type)
    return pd.DataFrame(
        np.asarray(dds.layers["vst_counts"]), index=dds.obs_names, columns=dds.var_names
    )


def sample_distance_matrix(vst_df: pd.DataFrame) -> pd.DataFrame:
    """Euclidean sample-to-sample distances over transformed counts.

    Args:
        vst_df (pd.DataFrame): Transformed matrix with samples as rows.

    Returns:
        pd.DataFrame: Symmetric samples x samples distance matrix.
    """
    distances = pairwise_distances(vst_df.to_numpy(), metric="euclidean")
    return pd.DataFrame(distances, index=vst_df.index, columns=vst_df.index)


def distance_linkage(distances: pd.DataFrame, method: str = "average") -> np.ndarray:
    """Hierarchical linkage computed directly from a square distance matrix."""
    condensed = squareform(distances.to_numpy(), checks=False)
    return hierarchy.linkage(condensed, method=method)


def run_pca(
    vst_df: pd.DataFrame,
    n_pcs: int = 2,
    random_state: int = 42,
) -> tuple[pd.DataFrame, np.ndarray]:
    """Project samples onto the leading principal components of their VST values.

    The component count is clamped to what the matrix supports, so a small
    cohort with fewer samples than ``n_pcs`` still gets a projection.

    Args:
        vst_df (pd.DataFrame): Variance-stabilized counts, samples x genes.
        n_pcs (int): Requested number of components.
        random_state (int): Seed passed to the PCA solver.

    Returns:
        tuple[pd.DataFrame, np.ndarray]: Sample coordinates (``PC1``, ``PC2``, ...)
        and the fraction of variance each component explains.
    """
    n_components = min(n_pcs, *vst_df.shape)
    pca = PCA(n_components=n_components, random_state=random_state)
    coordinates = pd.DataFrame(
        pca.fit_transform(vst_df.to_numpy()),
        index=vst_df.index,
        columns=[f"PC{i}" for i in range(1, n_components + 1)],
    )
    return coordinates, pca.explained_variance_ratio_


def category_colors(series: pd.Series, palette: Optional[dict[str, str]] = None) -> pd.Series:
    """Map category labels to colours.

    Labels found in ``palette`` keep their fixed colour; any other label gets
    a deterministic ``tab20`` colour by sorted order.
    """
    categories = series.astype("string").fillna("NA").astype(str)
    palette = dict(palette or {})
    unknown = sorted(set(categories) - set(palette))
    if unknown:
        fallback = sns.color_palette("tab20", n_colors=max(2, len(unknown)))
        palette.update({cat: fallback[i] for i, cat in enumerate(unknown)})
    return categories.map(palette)


def build_annotation_colors(metadata: pd.DataFrame, columns: Iterable[str]) -> Optional[pd.DataFrame]:
    """Build the row/column colour bars for the sample heatmap.

    Args:
        metadata (pd.DataFrame): Sample metadata indexed by sample id.
        columns (Iterable[str]): Categorical columns to show; absent ones are skipped.

    Returns:
        Optional[pd.DataFrame]: One colour column per present category, or
        ``None`` when none of ``columns`` exist.
    """
    color_cols: dict[str, pd.Series] = {}
    for col in columns:
        if col in metadata.columns:
            color_cols[col] = category_colors(metadata[col], CATEGORY_PALETTES.get(col))
    if not color_cols:
        return None
    return pd.DataFrame(color_cols, index=metadata.index)


def save_sample_distance_heatmap(
    distances: pd.DataFrame,
    colors_df: Optional[pd.DataFrame],
    out_path: Path,
    method: str = "average",
) -> sns.matrix.ClusterGrid:
    """Save the sample-distance heatmap, clustered on those same distances.

    Args:
        distances (pd.DataFrame): Symmetric sample-to-sample distance matrix.
        colors_df (Optional[pd.DataFrame]): Optional sample annotation colors.
        out_path (Path): Output path; the suffix selects the format.
        method (str): Linkage method for the dendrograms.

    Returns:
        sns.matrix.ClusterGrid: The closed grid, for inspecting the dendrograms.
    """
    linkage = distance_linkage(distances, method=method)
    cluster_grid = sns.clustermap(
        distances,
        row_linkage=linkage,
        col_linkage=linkage,
        cmap="Blues_r",
        linewidths=0.2,
        row_colors=colors_df,
        col_colors=colors_df,
        figsize=(11, 10),
    )
    cluster_grid.figure.suptitle("Sample-to-sample Euclidean distance (VST)", y=1.02)
    cluster_grid.savefig(out_path)
    plt.close(cluster_grid.figure)
    logger.info("Sample distance heatmap written to %s", out_path)
    return cluster_grid


def save_pca_plot(
    pca_with_meta: pd.DataFrame,
    hue_col: str,
    style_col: Optional[str],
    explained_variance: np.ndarray,
    out_path: Path,
) -> None:
    """Save a PC1/PC2 scatter coloured by ``hue_col`` and shaped by ``style_col``.

    Args:
        pca_with_meta (pd.DataFrame): ``run_pca`` coordinates joined with sample metadata.
        hue_col (str): Metadata column used for colour.
        style_col (Optional[str]): Metadata column used for marker shape, if present.
        explained_variance (np.ndarray): Variance ratios shown in the axis labels.
        out_path (Path): Output path; the suffix selects the format.
    """
    palette = CATEGORY_PALETTES.get(hue_col)
    if palette is not None:
        labels = pca_with_meta[hue_col].astype(str)
        palette = category_colors(labels, palette).groupby(labels).first().to_dict()

    plt.figure(figsize=(9, 7))
    sns.scatterplot(
        data=pca_with_meta.assign(**{hue_col: pca_with_meta[hue_col].astype(str)}),
        x="PC1",
        y="PC2",
        hue=hue_col,
        style=style_col if style_col in pca_with_meta.columns else None,
        palette=palette,
        s=100,
    )
    plt.xlabel(f"PC1 ({explained_variance[0]:.1%})")
    plt.ylabel(f"PC2 ({explained_variance[1]:.1%})")
    plt.title("PCA of variance-stabilized counts")
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()
