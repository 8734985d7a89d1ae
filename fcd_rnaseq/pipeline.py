from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pandas as pd
from pydeseq2.dds import DeseqDataSet

from . import differential_expression as de
from . import gene_enrichment as ge
from . import sample_qc
from .config import (
    DEFAULT_GENE_SETS,
    DIAGNOSIS_COL,
    FIGURE_FORMATS,
    LOBE_COL,
    PipelineConfig,
    contrast_label,
)
from .enrichment_network import edge_nodes, term_gene_edges
from .export import write_table
from .gene_mapping import IdentifierMap
from .preprocessing import (
    align_samples,
    apply_identifier_map,
    build_anndata,
    harmonize_categories,
    read_count_matrix,
    read_sample_metadata,
)

logger = logging.getLogger(__name__)


@dataclass
class ContrastResult:
    """Tables produced for one contrast."""

    label: str
    all_genes: pd.DataFrame
    enrichment: dict[str, pd.DataFrame] = field(default_factory=dict)

    @property
    def significant(self) -> pd.DataFrame:
        return de.significant_genes(self.all_genes)

    @property
    def upregulated(self) -> pd.DataFrame:
        return de.upregulated_genes(self.all_genes)


@dataclass
class PipelineResult:
    counts: pd.DataFrame
    metadata: pd.DataFrame
    gene_annotations: pd.DataFrame
    dds: DeseqDataSet
    normalized_counts: pd.DataFrame
    vst_counts: pd.DataFrame
    sample_distances: pd.DataFrame
    pca_coordinates: pd.DataFrame
    contrasts: dict[str, ContrastResult]
    written: list[Path] = field(default_factory=list)


def parse_contrast(text: str) -> tuple[str, str, str]:
    """Parse ``factor:tested:reference`` into a contrast tuple."""
    parts = [p.strip() for p in text.split(":")]
    if len(parts) != 3 or not all(parts):
        raise argparse.ArgumentTypeError(
            f"Contrast must look like factor:tested:reference, got {text!r}"
        )
    return parts[0], parts[1], parts[2]


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for the differential expression run.

    Args:
        argv (Optional[list[str]]): Arguments, defaults to ``sys.argv[1:]``.

    Returns:
        argparse.Namespace: Parsed arguments used to build a ``PipelineConfig``.
    """
    parser = argparse.ArgumentParser(
        description="Differential expression and GO enrichment of FCD RNA-seq counts."
    )
    parser.add_argument("--counts", type=Path, required=True, help="Tab-delimited gene count matrix.")
    parser.add_argument("--metadata", type=Path, required=True, help="Sample sheet (xlsx, csv or tsv).")
    parser.add_argument("--out-dir", type=Path, required=True, help="Directory to store outputs.")
    parser.add_argument(
        "--id-map",
        type=Path,
        default=None,
        help="Local gene_id/gene_name table. Queries MyGene.info when omitted.",
    )
    parser.add_argument("--species", type=str, default="human", help="Species for MyGene.info lookups.")
    parser.add_argument(
        "--design",
        type=str,
        default=f"~{LOBE_COL} + {DIAGNOSIS_COL}",
        help="Additive design formula.",
    )
    parser.add_argument(
        "--contrast",
        type=parse_contrast,
        action="append",
        default=None,
        help="Contrast as factor:tested:reference (repeatable). Default diagnosis:FCDIIb:Control.",
    )
    parser.add_argument("--min-count", type=int, default=10, help="Pre-filter minimum count.")
    parser.add_argument("--min-samples", type=int, default=5, help="Pre-filter minimum supporting samples.")
    parser.add_argument(
        "--fit-type",
        choices=["parametric", "mean"],
        default="parametric",
        help="Dispersion trend used by the model and the VST.",
    )
    parser.add_argument("--n-cpus", type=int, default=1, help="Number of CPUs to use in PyDESeq2.")
    parser.add_argument("--alpha", type=float, default=0.1, help="Adjusted p-value threshold.")
    parser.add_argument("--fold-change", type=float, default=1.5, help="Linear fold-change threshold.")
    parser.add_argument(
        "--label-cutoff", type=float, default=2.5, help="|log2FC| above which volcano points are labelled."
    )
    parser.add_argument(
        "--gene-sets",
        type=str,
        default=DEFAULT_GENE_SETS,
        help="GMT file or Enrichr library name. Use 'none' to skip enrichment.",
    )
    parser.add_argument("--organism", type=str, default="Human", help="Organism for Enrichr libraries.")
    parser.add_argument("--no-prerank", action="store_true", help="Skip ranked GSEA.")
    parser.add_argument("--no-ora", action="store_true", help="Skip over-representation analysis.")
    parser.add_argument("--permutations", type=int, default=1000, help="GSEA permutation count.")
    parser.add_argument("--simplify-cutoff", type=float, default=0.7, help="Term redundancy cutoff.")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for GSEA and PCA.")
    parser.add_argument("--sep", type=str, default=",", help="Output table delimiter.")
    parser.add_argument("--decimals", type=int, default=None, help="Round output floats.")
    parser.add_argument(
        "--figure-format",
        choices=list(FIGURE_FORMATS),
        default="pdf",
        help="Figure format.",
    )
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level.")
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    """Build a ``PipelineConfig`` from parsed command-line arguments.

    ``--gene-sets none`` disables enrichment and ``--sep tab`` selects a tab
    delimiter.
    """
    gene_sets = None if args.gene_sets.lower() == "none" else args.gene_sets
    kwargs = {}
    if args.contrast:
        kwargs["contrasts"] = args.contrast
    return PipelineConfig(
        counts_path=args.counts,
        metadata_path=args.metadata,
        out_dir=args.out_dir,
        id_map_path=args.id_map,
        species=args.species,
        design=args.design,
        min_count=args.min_count,
        min_samples=args.min_samples,
        fit_type=args.fit_type,
        n_cpus=args.n_cpus,
        alpha=args.alpha,
        fold_change=args.fold_change,
        label_cutoff=args.label_cutoff,
        gene_sets=gene_sets,
        organism=args.organism,
        run_prerank=not args.no_prerank,
        run_ora=not args.no_ora,
        permutation_num=args.permutations,
        simplify_cutoff=args.simplify_cutoff,
        seed=args.seed,
        sep="\t" if args.sep in ("\\t", "tab") else args.sep,
        decimals=args.decimals,
        figure_format=args.figure_format,
        **kwargs,
    )


def validate_contrasts(metadata: pd.DataFrame, contrasts: list[tuple[str, str, str]]) -> None:
    """Check every contrast names a metadata column and two of its levels.

    Args:
        metadata (pd.DataFrame): Harmonized sample metadata.
        contrasts (list[tuple[str, str, str]]): ``(factor, tested, reference)`` triples.

    Raises:
        ValueError: If a factor or level is missing.
    """
    for factor, tested, reference in contrasts:
        if factor not in metadata.columns:
            raise ValueError(f"Contrast factor {factor!r} is not a metadata column")
        levels = set(metadata[factor].astype(str))
        missing = [lvl for lvl in (tested, reference) if lvl not in levels]
        if missing:
            raise ValueError(
                f"Contrast level(s) {missing} not found in {factor!r}; available: {sorted(levels)}"
            )


def load_inputs(
    config: PipelineConfig, id_map: Optional[IdentifierMap] = None
) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """Data loading and alignment stages.

    Returns:
        tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]: Aligned counts,
        harmonized metadata and gene annotations.
    """
    counts = read_count_matrix(config.counts_path)
    metadata = read_sample_metadata(config.metadata_path)

    if id_map is None:
        if config.id_map_path is not None:
            id_map = IdentifierMap.from_table(config.id_map_path)
        else:
            id_map = IdentifierMap.from_mygene(counts.index, species=config.species)
    counts, gene_annotations = apply_identifier_map(counts, id_map)

    metadata = harmonize_categories(metadata, config.categorical_cols)
    counts = align_samples(counts, metadata)
    return counts, metadata, gene_annotations


def run_enrichment(
    results: pd.DataFrame,
    gene_sets: dict[str, list[str]],
    config: PipelineConfig,
) -> dict[str, pd.DataFrame]:
    """GSEA prerank and ORA for one contrast, with simplified and edge tables."""
    tables: dict[str, pd.DataFrame] = {}
    if config.run_prerank:
        prerank = ge.prerank_or_none(
            results,
            gene_sets,
            metric=config.rank_metric,
            min_size=config.min_size,
            max_size=config.max_size,
            permutation_num=config.permutation_num,
            seed=config.seed,
            threads=config.n_cpus,
        )
        if prerank is not None:
            _add_enrichment_tables(
                tables, "gsea_prerank", prerank, results, ge.PRERANK_TERM_COL, ge.PRERANK_GENES_COL,
                ge.PRERANK_PVAL_COL, config.simplify_cutoff,
            )
    if config.run_ora:
        ora = ge.ora_or_none(results, gene_sets, cutoff=config.ora_cutoff)
        if ora is not None:
            _add_enrichment_tables(
                tables, "ora_up", ora, results, ge.ORA_TERM_COL, ge.ORA_GENES_COL,
                ge.ORA_PVAL_COL, config.simplify_cutoff,
            )
    return tables


def _add_enrichment_tables(
    tables: dict[str, pd.DataFrame],
    name: str,
    raw: pd.DataFrame,
    de_results: pd.DataFrame,
    term_col: str,
    genes_col: str,
    pval_col: str,
    simplify_cutoff: float,
) -> None:
    simplified = ge.simplify_terms(raw, genes_col=genes_col, pval_col=pval_col, cutoff=simplify_cutoff)
    edges = term_gene_edges(simplified, term_col=term_col, genes_col=genes_col, de_results=de_results)
    tables[name] = raw
    tables[f"{name}_simplified"] = simplified
    tables[f"{name}_edges"] = edges
    tables[f"{name}_nodes"] = edge_nodes(edges)


def run_pipeline(config: PipelineConfig, id_map: Optional[IdentifierMap] = None) -> PipelineResult:
    """Run every stage in order and write all tables and figures.

    Args:
        config (PipelineConfig): Run configuration.
        id_map (Optional[IdentifierMap]): Pre-built identifier map; when
            omitted it is read from ``config.id_map_path`` or queried online.

    Returns:
        PipelineResult: In-memory tables of the run.
    """
    config.out_dir.mkdir(parents=True, exist_ok=True)

    logger.info("Loading and aligning inputs")
    counts, metadata, gene_annotations = load_inputs(config, id_map=id_map)
    validate_contrasts(metadata, config.contrasts)

    logger.info("Fitting model")
    counts = de.prefilter_genes(counts, min_count=config.min_count, min_samples=config.min_samples)
    adata = build_anndata(counts, metadata, gene_annotations)
    dds = de.fit_model(
        adata,
        design=config.design,
        fit_type=config.fit_type,
        refit_cooks=config.refit_cooks,
        n_cpus=config.n_cpus,
    )
    normed = de.normalized_counts(dds)

    logger.info("Extracting %d contrast(s)", len(config.contrasts))
    contrast_results: dict[str, ContrastResult] = {}
    for contrast in config.contrasts:
        label = contrast_label(contrast)
        res = de.extract_contrast(dds, contrast, alpha=config.alpha, n_cpus=config.n_cpus)
        res = de.annotate_results(res, gene_annotations)
        res = de.classify_results(res, alpha=config.alpha, fold_change=config.fold_change)
        logger.info(
            "%s: %d significant genes (%d up) at padj < %g, FC > %g",
            label,
            len(de.significant_genes(res)),
            len(de.upregulated_genes(res)),
            config.alpha,
            config.fold_change,
        )
        contrast_results[label] = ContrastResult(label=label, all_genes=res)

    logger.info("Rendering figures")
    vst = sample_qc.variance_stabilize(dds, fit_type=config.fit_type)
    distances = sample_qc.sample_distance_matrix(vst)
    colors = sample_qc.build_annotation_colors(metadata, config.categorical_cols)
    sample_qc.save_sample_distance_heatmap(distances, colors, config.figure_path("sample_distance_heatmap"))
    pca_df, explained = sample_qc.run_pca(vst, n_pcs=2, random_state=config.seed)
    pca_with_meta = pca_df.join(metadata, how="left")
    if pca_df.shape[1] >= 2:
        sample_qc.save_pca_plot(
            pca_with_meta, DIAGNOSIS_COL, LOBE_COL, explained, config.figure_path("pca_plot")
        )
    for label, cres in contrast_results.items():
        de.save_volcano_plot(
            cres.all_genes,
            config.figure_path(f"volcano_{label}"),
            alpha=config.alpha,
            fold_change=config.fold_change,
            label_cutoff=config.label_cutoff,
            title=label.replace("_", " "),
        )

    if config.gene_sets is not None and (config.run_prerank or config.run_ora):
        logger.info("Running enrichment")
        gene_sets = ge.load_gene_sets(config.gene_sets, organism=config.organism)
        for cres in contrast_results.values():
            cres.enrichment = run_enrichment(cres.all_genes, gene_sets, config)
    else:
        logger.info("No gene set source configured, skipping enrichment")

    logger.info("Exporting tables")
    written = []

    def export(df: pd.DataFrame, name: str, index: bool = True) -> None:
        written.append(
            write_table(df, config.table_path(name), sep=config.sep, index=index, decimals=config.decimals)
        )

    export(normed, "normalized_counts")
    export(vst.T, "vst_counts")
    export(distances, "sample_distances")
    export(pca_with_meta, "pca_coordinates")
    for label, cres in contrast_results.items():
        export(cres.all_genes, f"de_results_all_{label}")
        export(cres.significant, f"de_results_significant_{label}")
        export(cres.upregulated, f"de_results_up_{label}")
        for name, table in cres.enrichment.items():
            export(table, f"{name}_{label}", index=False)

    return PipelineResult(
        counts=counts,
        metadata=metadata,
        gene_annotations=gene_annotations,
        dds=dds,
        normalized_counts=normed,
        vst_counts=vst,
        sample_distances=distances,
        pca_coordinates=pca_with_meta,
        contrasts=contrast_results,
        written=written,
    )


def main(argv: Optional[list[str]] = None) -> None:
    """Run the complete differential expression workflow and write outputs."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = config_from_args(args)
    result = run_pipeline(config)
    print(f"Analysis completed. {len(result.written)} tables written to: {config.out_dir}")


if __name__ == "__main__":
    main()
