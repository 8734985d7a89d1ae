"""Shared fixtures: a toy 4-gene x 6-sample FCDIIb vs Control dataset."""

import matplotlib

matplotlib.use("Agg")

import pandas as pd
import pytest

from fcd_rnaseq.gene_mapping import IdentifierMap

SAMPLES = ["S1", "S2", "S3", "S4", "S5", "S6"]
DIAGNOSES = ["Control", "Control", "Control", "FCDIIb", "FCDIIb", "FCDIIb"]
LOBES = ["Frontal", "Temporal", "Frontal", "Temporal", "Frontal", "Temporal"]

# GENE1 is ~4x higher in FCDIIb; the rest are flat with NB-like noise.
TOY_COUNTS = {
    "ENSG00000000001": [80, 120, 100, 330, 470, 400],
    "ENSG00000000002": [420, 610, 500, 450, 560, 480],
    "ENSG00000000003": [240, 370, 300, 260, 340, 310],
    "ENSG00000000004": [680, 950, 780, 900, 700, 820],
}

TOY_SYMBOLS = {
    "ENSG00000000001": "GENE1",
    "ENSG00000000002": "GENE2",
    "ENSG00000000003": "GENE3",
    "ENSG00000000004": "GENE4",
}


@pytest.fixture
def toy_counts():
    return pd.DataFrame.from_dict(TOY_COUNTS, orient="index", columns=SAMPLES)


@pytest.fixture
def toy_metadata():
    return pd.DataFrame(
        {"diagnosis": DIAGNOSES, "lobe": LOBES},
        index=pd.Index(SAMPLES, name="sample"),
    )


@pytest.fixture
def toy_id_map():
    return IdentifierMap(
        pd.DataFrame({"gene_id": list(TOY_SYMBOLS), "gene_name": list(TOY_SYMBOLS.values())})
    )


@pytest.fixture
def count_file(tmp_path):
    """Raw count file with version suffixes, a transcript column, a repeated
    gene and a gene that has no symbol."""
    rows = []
    for i, (gene_id, values) in enumerate(TOY_COUNTS.items()):
        rows.append([f"{gene_id}.{i + 3}", f"ENST0000000000{i}.1"] + [v + 0.4 for v in values])
    rows.append(["ENSG00000000001.9", "ENST00000000099.1"] + [1, 1, 1, 1, 1, 1])
    rows.append(["ENSG00000000099.1", "ENST00000000098.1"] + [50, 50, 50, 50, 50, 50])
    df = pd.DataFrame(rows, columns=["gene_id", "transcript_id(s)"] + SAMPLES)
    path = tmp_path / "gene_counts.tsv"
    df.to_csv(path, sep="\t", index=False)
    return path


@pytest.fixture
def metadata_file(tmp_path):
    """Sample sheet in a different row order with untidy labels."""
    order = [5, 0, 3, 1, 4, 2]
    df = pd.DataFrame(
        {
            "sample": [SAMPLES[i] for i in order],
            "diagnosis": [DIAGNOSES[i] for i in order],
            "lobe": [LOBES[i] for i in order],
        }
    )
    df.loc[1, "diagnosis"] = " control "
    df.loc[2, "lobe"] = "temporal"
    path = tmp_path / "sample_metadata.xlsx"
    df.to_excel(path, index=False)
    return path
