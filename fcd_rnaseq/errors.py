"""Exceptions raised by the pipeline for invalid inputs."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for input errors detected by the pipeline."""


class MissingColumnError(PipelineError, ValueError):
    """A required column is absent from an input table."""

    def __init__(self, table: str, missing: list[str]) -> None:
        self.table = table
        self.missing = missing
        super().__init__(f"Missing required column(s) in {table}: {missing}")


class SampleMismatchError(PipelineError, ValueError):
    """Count matrix columns and metadata rows do not describe the same samples."""

    def __init__(
        self,
        missing_in_counts: list[str],
        missing_in_metadata: list[str],
        duplicated: list[str] | None = None,
    ) -> None:
        self.missing_in_counts = missing_in_counts
        self.missing_in_metadata = missing_in_metadata
        self.duplicated = duplicated or []
        parts = []
        if missing_in_counts:
            parts.append(f"in metadata but not in counts: {missing_in_counts}")
        if missing_in_metadata:
            parts.append(f"in counts but not in metadata: {missing_in_metadata}")
        if self.duplicated:
            parts.append(f"duplicated sample ids: {self.duplicated}")
        super().__init__("Sample mismatch between counts and metadata; " + "; ".join(parts))
