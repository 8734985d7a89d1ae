# ---
# jupyter:
#   jupytext:
#     formats: ipynb,py:percent
#     text_representation:
#       extension: .py
#       format_name: percent
#       format_version: '1.3'
#       jupytext_version: 1.18.1
#   kernelspec:
#     display_name: base
#     language: python
#     name: python3
# ---

# %% [markdown]
# # FCD IIb vs Control: differential expression and GO enrichment
# Counts are fitted with PyDESeq2 (`~lobe + diagnosis`), results are classified
# at padj < 0.1 and a 1.5x fold change, then enriched against GO Biological Process.

# %%
from __future__ import annotations

import logging
from pathlib import Path

from fcd_rnaseq import differential_expression as de
from fcd_rnaseq import gene_enrichment as ge
from fcd_rnaseq import sample_qc
from fcd_rnaseq.config import STATUS_COL, PipelineConfig, contrast_label
from fcd_rnaseq.enrichment_network import edge_nodes, term_gene_edges
from fcd_rnaseq.export import write_table
from fcd_rnaseq.pipeline import load_inputs, validate_contrasts
from fcd_rnaseq.preprocessing import build_anndata

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

# %% [markdown]
# ## Config

# %%
DATA_DIR = Path("data")
config = PipelineConfig(
    counts_path=DATA_DIR / "gene_counts.tsv",
    metadata_path=DATA_DIR / "sample_metadata.xlsx",
    out_dir=Path("results") / "fcd_iib_vs_control",
    alpha=0.1,
    fold_change=1.5,
)
config.out_dir.mkdir(parents=True, exist_ok=True)
CONTRAST = config.contrasts[0]
LABEL = contrast_label(CONTRAST)

# %% [markdown]
# ## Load and align counts and metadata

# %%
counts, metadata, gene_annotations = load_inputs(config)
validate_contrasts(metadata, config.contrasts)
counts.shape, metadata.shape

# %%
metadata.head()

# %% [markdown]
# ## Fit the model

# %%
counts = de.prefilter_genes(counts, min_count=config.min_count, min_samples=config.min_samples)
adata = build_anndata(counts, metadata, gene_annotations)
dds = de.fit_model(adata, design=config.design, fit_type=config.fit_type, n_cpus=config.n_cpus)

# %% [markdown]
# ## Results for FCDIIb vs Control

# %%
results_df = de.extract_contrast(dds, CONTRAST, alpha=config.alpha, n_cpus=config.n_cpus)
results_df = de.annotate_results(results_df, gene_annotations)
results_df = de.classify_results(results_df, alpha=config.alpha, fold_change=config.fold_change)
significant = de.significant_genes(results_df)
upregulated = de.upregulated_genes(results_df)
results_df[STATUS_COL].value_counts()

# %% [markdown]
# ## Sample distances and volcano plot

# %%
vst = sample_qc.variance_stabilize(dds, fit_type=config.fit_type)
distances = sample_qc.sample_distance_matrix(vst)
colors = sample_qc.build_annotation_colors(metadata, config.categorical_cols)
sample_qc.save_sample_distance_heatmap(distances, colors, config.figure_path("sample_distance_heatmap"))

# %%
de.save_volcano_plot(
    results_df,
    config.figure_path(f"volcano_{LABEL}"),
    alpha=config.alpha,
    fold_change=config.fold_change,
    label_cutoff=config.label_cutoff,
    title="FCDIIb vs Control",
)

# %% [markdown]
# ## GO enrichment
# Ranked GSEA over every tested gene, then ORA on up-regulated genes only.

# %%
gene_sets = ge.load_gene_sets(config.gene_sets, organism=config.organism)
prerank = ge.prerank_or_none(results_df, gene_sets, permutation_num=config.permutation_num, seed=config.seed)
ora_up = ge.ora_or_none(results_df, gene_sets, cutoff=config.ora_cutoff)

# %%
enrichment_tables = {}
for name, raw, genes_col, pval_col in [
    ("gsea_prerank", prerank, ge.PRERANK_GENES_COL, ge.PRERANK_PVAL_COL),
    ("ora_up", ora_up, ge.ORA_GENES_COL, ge.ORA_PVAL_COL),
]:
    if raw is None:
        continue
    simplified = ge.simplify_terms(raw, genes_col=genes_col, pval_col=pval_col, cutoff=config.simplify_cutoff)
    edges = term_gene_edges(simplified, term_col="Term", genes_col=genes_col, de_results=results_df)
    enrichment_tables[name] = raw
    enrichment_tables[f"{name}_simplified"] = simplified
    enrichment_tables[f"{name}_edges"] = edges
    enrichment_tables[f"{name}_nodes"] = edge_nodes(edges)

# %% [markdown]
# ## Export

# %%
write_table(de.normalized_counts(dds), config.table_path("normalized_counts"))
write_table(vst.T, config.table_path("vst_counts"))
write_table(results_df, config.table_path(f"de_results_all_{LABEL}"))
write_table(significant, config.table_path(f"de_results_significant_{LABEL}"))
write_table(upregulated, config.table_path(f"de_results_up_{LABEL}"))
for name, table in enrichment_tables.items():
    write_table(table, config.table_path(f"{name}_{LABEL}"), index=False)
