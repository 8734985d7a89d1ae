"""End-to-end and command-line tests for the analysis pipeline."""

import argparse
from unittest.mock import patch

import pandas as pd
import pytest

from fcd_rnaseq import gene_enrichment as ge
from fcd_rnaseq.config import UP, PipelineConfig, contrast_label
from fcd_rnaseq.errors import SampleMismatchError
from fcd_rnaseq.pipeline import (
    config_from_args,
    parse_args,
    parse_contrast,
    run_enrichment,
    run_pipeline,
    validate_contrasts,
)

from conftest import SAMPLES

LABEL = "diagnosis_FCDIIb_vs_Control"


@pytest.fixture
def toy_config(count_file, metadata_file, tmp_path):
    return PipelineConfig(
        counts_path=count_file,
        metadata_path=metadata_file,
        out_dir=tmp_path / "results",
        design="~diagnosis",
        fit_type="mean",
        gene_sets=None,
    )


class TestToyScenario:
    """4 genes x 6 samples, GENE1 ~4x higher in FCDIIb."""

    def test_de_gene_reported_up_regulated(self, toy_config, toy_id_map):
        result = run_pipeline(toy_config, id_map=toy_id_map)
        res = result.contrasts[LABEL].all_genes
        gene1 = res.loc["ENSG00000000001"]

        assert gene1["gene_name"] == "GENE1"
        assert gene1["padj"] < 0.1
        assert gene1["log2FoldChange"] > 0
        assert gene1["Status"] == UP
        assert "ENSG00000000001" in result.contrasts[LABEL].upregulated.index

    def test_inputs_aligned_and_cleaned(self, toy_config, toy_id_map):
        result = run_pipeline(toy_config, id_map=toy_id_map)
        assert list(result.counts.columns) == list(result.metadata.index)
        assert set(result.counts.index) == {
            "ENSG00000000001",
            "ENSG00000000002",
            "ENSG00000000003",
            "ENSG00000000004",
        }
        assert set(result.metadata["diagnosis"]) == {"Control", "FCDIIb"}

    def test_outputs_written(self, toy_config, toy_id_map):
        result = run_pipeline(toy_config, id_map=toy_id_map)
        out = toy_config.out_dir
        for name in (
            "normalized_counts.csv",
            "vst_counts.csv",
            "sample_distances.csv",
            f"de_results_all_{LABEL}.csv",
            f"de_results_significant_{LABEL}.csv",
            f"de_results_up_{LABEL}.csv",
            "sample_distance_heatmap.pdf",
            f"volcano_{LABEL}.pdf",
        ):
            assert (out / name).exists(), name
        assert len(result.written) >= 7

        all_genes = pd.read_csv(out / f"de_results_all_{LABEL}.csv", index_col=0)
        assert list(all_genes.index) == list(result.contrasts[LABEL].all_genes.index)

    def test_stricter_fold_change_never_adds_genes(self, toy_config, toy_id_map, tmp_path):
        loose = run_pipeline(toy_config, id_map=toy_id_map)
        toy_config.fold_change = 3.0
        toy_config.out_dir = tmp_path / "strict"
        strict = run_pipeline(toy_config, id_map=toy_id_map)
        assert len(strict.contrasts[LABEL].significant) <= len(loose.contrasts[LABEL].significant)

    def test_sample_mismatch_fails_before_fitting(self, toy_config, toy_id_map, tmp_path):
        metadata = pd.read_excel(toy_config.metadata_path)
        short = tmp_path / "short.xlsx"
        metadata[metadata["sample"] != "S3"].to_excel(short, index=False)
        toy_config.metadata_path = short
        with patch("fcd_rnaseq.pipeline.de.fit_model") as mock_fit:
            with pytest.raises(SampleMismatchError) as exc:
                run_pipeline(toy_config, id_map=toy_id_map)
        assert exc.value.missing_in_metadata == ["S3"]
        mock_fit.assert_not_called()


class TestEnrichmentStage:
    def test_tables_for_both_modes(self, toy_config):
        res = pd.DataFrame(
            {
                "log2FoldChange": [2.0, 1.0, -0.1],
                "gene_name": ["GENE1", "GENE2", "GENE3"],
                "Status": [UP, UP, "Not significant"],
            },
            index=["E1", "E2", "E3"],
        )
        prerank = pd.DataFrame({"Term": ["GO_A", "GO_B"], "FDR q-val": [0.01, 0.02], "Lead_genes": ["GENE1;GENE2", "GENE1;GENE2"]})
        ora = pd.DataFrame({"Term": ["GO_A"], "Adjusted P-value": [0.01], "Genes": ["GENE1;GENE2"]})
        with patch.object(ge, "run_prerank", return_value=prerank), patch.object(ge, "run_ora", return_value=ora):
            tables = run_enrichment(res, {"GO_A": ["GENE1", "GENE2"]}, toy_config)

        assert set(tables) == {
            "gsea_prerank",
            "gsea_prerank_simplified",
            "gsea_prerank_edges",
            "gsea_prerank_nodes",
            "ora_up",
            "ora_up_simplified",
            "ora_up_edges",
            "ora_up_nodes",
        }
        assert tables["gsea_prerank_simplified"]["Term"].tolist() == ["GO_A"]
        assert len(tables["ora_up_edges"]) == 2


class TestCommandLine:
    def test_parse_contrast(self):
        assert parse_contrast("diagnosis:FCDIIb:Control") == ("diagnosis", "FCDIIb", "Control")
        with pytest.raises(argparse.ArgumentTypeError):
            parse_contrast("diagnosis:FCDIIb")

    def test_defaults(self, tmp_path):
        args = parse_args(["--counts", "c.tsv", "--metadata", "m.xlsx", "--out-dir", str(tmp_path)])
        config = config_from_args(args)
        assert config.alpha == 0.1
        assert config.fold_change == 1.5
        assert config.min_count == 10 and config.min_samples == 5
        assert config.design == "~lobe + diagnosis"
        assert config.contrasts == [("diagnosis", "FCDIIb", "Control")]
        assert config.gene_sets == "GO_Biological_Process_2023"

    def test_overrides(self, tmp_path):
        args = parse_args(
            [
                "--counts", "c.tsv",
                "--metadata", "m.xlsx",
                "--out-dir", str(tmp_path),
                "--fold-change", "3",
                "--gene-sets", "none",
                "--contrast", "lobe:Temporal:Frontal",
                "--sep", "tab",
            ]
        )
        config = config_from_args(args)
        assert config.fold_change == 3.0
        assert config.gene_sets is None
        assert config.contrasts == [("lobe", "Temporal", "Frontal")]
        assert config.table_path("x").name == "x.tsv"

    def test_figure_format_choices(self, tmp_path):
        base = ["--counts", "c.tsv", "--metadata", "m.xlsx", "--out-dir", str(tmp_path)]
        config = config_from_args(parse_args(base + ["--figure-format", "svg"]))
        assert config.figure_path("volcano").name == "volcano.svg"
        with pytest.raises(SystemExit):
            parse_args(base + ["--figure-format", "jpg"])


class TestConfig:
    def test_invalid_alpha(self, tmp_path):
        with pytest.raises(ValueError):
            PipelineConfig(counts_path="c", metadata_path="m", out_dir=tmp_path, alpha=1.5)

    def test_invalid_fold_change(self, tmp_path):
        with pytest.raises(ValueError):
            PipelineConfig(counts_path="c", metadata_path="m", out_dir=tmp_path, fold_change=0.5)

    def test_invalid_figure_format(self, tmp_path):
        with pytest.raises(ValueError, match="figure_format"):
            PipelineConfig(counts_path="c", metadata_path="m", out_dir=tmp_path, figure_format="jpg")

    def test_contrast_label(self):
        assert contrast_label(("diagnosis", "FCDIIb", "Control")) == LABEL


class TestValidateContrasts:
    def test_unknown_level(self, toy_metadata):
        with pytest.raises(ValueError, match="FCDIIa"):
            validate_contrasts(toy_metadata, [("diagnosis", "FCDIIa", "Control")])

    def test_unknown_factor(self, toy_metadata):
        with pytest.raises(ValueError):
            validate_contrasts(toy_metadata, [("sex", "M", "F")])

    def test_valid(self, toy_metadata):
        validate_contrasts(toy_metadata, [("diagnosis", "FCDIIb", "Control")])
        assert list(toy_metadata.index) == SAMPLES
