"""Differential expression and GO enrichment for FCD bulk RNA-seq counts."""

__version__ = "0.1.0"
