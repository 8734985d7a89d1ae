from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Input columns
SAMPLE_COL = "sample"
DIAGNOSIS_COL = "diagnosis"
LOBE_COL = "lobe"
GENE_ID_COL = "gene_id"
GENE_NAME_COL = "gene_name"
TRANSCRIPT_COLS = ("transcript_id(s)", "transcript_ids", "transcript_id")
REQUIRED_METADATA_COLS = (SAMPLE_COL, DIAGNOSIS_COL, LOBE_COL)

# Result columns
LOG2FC_COL = "log2FoldChange"
PADJ_COL = "padj"
SIGNIFICANCE_COL = "significance"
STATUS_COL = "Status"

UP = "Up-regulated"
DOWN = "Down-regulated"
NOT_SIGNIFICANT = "Not significant"
SIGNIFICANT = "Significant"

STATUS_PALETTE = {
    UP: "#d62728",
    DOWN: "#1f77b4",
    NOT_SIGNIFICANT: "lightgrey",
}

# Sample annotation colours for the distance heatmap and PCA plot
CATEGORY_PALETTES = {
    DIAGNOSIS_COL: {
        "Control": "#1b9e77",
        "FCDIIb": "#d95f02",
        "FCDIIa": "#7570b3",
    },
    LOBE_COL: {
        "Frontal": "#66c2a5",
        "Temporal": "#fc8d62",
        "Parietal": "#8da0cb",
        "Occipital": "#e78ac3",
        "Insular": "#a6d854",
    },
}

DEFAULT_GENE_SETS = "GO_Biological_Process_2023"
FIGURE_FORMATS = ("pdf", "svg", "png")


@dataclass
class PipelineConfig:
    """Paths and thresholds for one pipeline run."""

    counts_path: Path
    metadata_path: Path
    out_dir: Path
    id_map_path: Optional[Path] = None
    species: str = "human"

    design: str = f"~{LOBE_COL} + {DIAGNOSIS_COL}"
    contrasts: list[tuple[str, str, str]] = field(
        default_factory=lambda: [(DIAGNOSIS_COL, "FCDIIb", "Control")]
    )
    categorical_cols: tuple[str, ...] = (DIAGNOSIS_COL, LOBE_COL)
    min_count: int = 10
    min_samples: int = 5
    fit_type: str = "parametric"
    refit_cooks: bool = True
    n_cpus: int = 1

    alpha: float = 0.1
    fold_change: float = 1.5
    label_cutoff: float = 2.5

    gene_sets: Optional[str] = DEFAULT_GENE_SETS
    organism: str = "Human"
    run_prerank: bool = True
    run_ora: bool = True
    rank_metric: str = LOG2FC_COL
    min_size: int = 15
    max_size: int = 500
    permutation_num: int = 1000
    ora_cutoff: float = 0.05
    simplify_cutoff: float = 0.7
    seed: int = 42

    sep: str = ","
    decimals: Optional[int] = None
    figure_format: str = "pdf"

    def __post_init__(self) -> None:
        self.counts_path = Path(self.counts_path)
        self.metadata_path = Path(self.metadata_path)
        self.out_dir = Path(self.out_dir)
        if self.id_map_path is not None:
            self.id_map_path = Path(self.id_map_path)
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.fold_change < 1:
            raise ValueError(f"fold_change must be >= 1, got {self.fold_change}")
        if self.min_count < 0 or self.min_samples < 0:
            raise ValueError("min_count and min_samples must be non-negative")
        if self.fit_type not in ("parametric", "mean"):
            raise ValueError(f"fit_type must be 'parametric' or 'mean', got {self.fit_type!r}")
        if self.figure_format not in FIGURE_FORMATS:
            raise ValueError(f"figure_format must be one of {FIGURE_FORMATS}, got {self.figure_format!r}")

    @property
    def lfc_cutoff(self) -> float:
        return math.log2(self.fold_change)

    @property
    def table_suffix(self) -> str:
        return ".tsv" if self.sep == "\t" else ".csv"

    def table_path(self, name: str) -> Path:
        return self.out_dir / f"{name}{self.table_suffix}"

    def figure_path(self, name: str) -> Path:
        return self.out_dir / f"{name}.{self.figure_format}"


def contrast_label(contrast: tuple[str, str, str]) -> str:
    """``("diagnosis", "FCDIIb", "Control")`` -> ``"diagnosis_FCDIIb_vs_Control"``."""
    factor, tested, reference = contrast
    return f"{factor}_{tested}_vs_{reference}"
