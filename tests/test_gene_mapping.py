"""Tests for the accession to symbol map."""

from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from fcd_rnaseq.errors import MissingColumnError
from fcd_rnaseq.gene_mapping import IdentifierMap


def _map(pairs):
    return IdentifierMap(pd.DataFrame(pairs, columns=["gene_id", "gene_name"]))


class TestIdentifierMap:
    """Deduplication rules of the mapping table."""

    def test_ambiguous_accessions_dropped(self):
        id_map = _map([("E1", "A"), ("E1", "B"), ("E2", "C")])
        assert "E1" not in id_map
        assert id_map.symbols(["E1", "E2"]).tolist()[1] == "C"
        assert pd.isna(id_map.symbols(["E1"]).iloc[0])

    def test_repeated_pairs_collapse(self):
        id_map = _map([("E1", "A"), ("E1", "A"), ("E1", " A ")])
        assert len(id_map) == 1
        assert id_map.symbols(["E1"]).iloc[0] == "A"

    def test_many_to_one_kept(self):
        id_map = _map([("E1", "A"), ("E2", "A")])
        assert id_map.symbols(["E1", "E2"]).tolist() == ["A", "A"]

    def test_empty_symbols_dropped(self):
        id_map = _map([("E1", ""), ("E2", np.nan), ("E3", "C")])
        assert len(id_map) == 1

    def test_missing_columns(self):
        with pytest.raises(MissingColumnError):
            IdentifierMap(pd.DataFrame({"gene_id": ["E1"]}))

    def test_from_table(self, tmp_path):
        path = tmp_path / "map.tsv"
        pd.DataFrame({"gene_id": ["E1", "E2"], "gene_name": ["A", "B"]}).to_csv(path, sep="\t", index=False)
        id_map = IdentifierMap.from_table(path)
        assert id_map.to_frame().to_dict("list") == {"gene_id": ["E1", "E2"], "gene_name": ["A", "B"]}


class TestFromMyGene:
    """Online lookups are mocked."""

    def test_not_found_rows_dropped(self):
        response = pd.DataFrame(
            {"symbol": ["TSPAN6", np.nan], "notfound": [np.nan, True]},
            index=pd.Index(["ENSG00000000003", "ENSG00000999999"], name="query"),
        )
        with patch("fcd_rnaseq.gene_mapping.mygene.MyGeneInfo") as mock_cls:
            mock_cls.return_value.querymany.return_value = response
            id_map = IdentifierMap.from_mygene(["ENSG00000000003", "ENSG00000999999"])

        assert id_map.symbols(["ENSG00000000003"]).iloc[0] == "TSPAN6"
        assert "ENSG00000999999" not in id_map
        kwargs = mock_cls.return_value.querymany.call_args.kwargs
        assert kwargs["scopes"] == "ensembl.gene"
        assert kwargs["species"] == "human"

    def test_queries_in_chunks(self):
        ids = [f"ENSG{i:011d}" for i in range(2500)]
        with patch("fcd_rnaseq.gene_mapping.mygene.MyGeneInfo") as mock_cls:
            mock_cls.return_value.querymany.return_value = pd.DataFrame({"symbol": []})
            id_map = IdentifierMap.from_mygene(ids)
        assert mock_cls.return_value.querymany.call_count == 3
        assert len(id_map) == 0
