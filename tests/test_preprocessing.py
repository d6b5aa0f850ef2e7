"""Tests for catalog loading, record identifiers and content hashing."""

import copy
import re

import pytest

from conftest import make_tool
from preprocessing import (
    DATA_SOURCES,
    TOOL_NAME,
    ToolDataLoader,
    assign_record_ids,
    compute_content_hash,
    derive_tool_id,
    random_tool_id,
    split_multi_values,
)


class TestRecordIds:

    @pytest.mark.parametrize("name, expected", [
        ("Global Forest Watch", "global-forest-watch"),
        ("Aqueduct (WRI) 4.0", "aqueduct-wri-40"),
        ("Tool  Name", "tool-name"),
        ("ENCORE", "encore"),
        ("!!!", ""),
        ("", ""),
        (None, ""),
    ])
    def test_derive_tool_id(self, name, expected):
        assert derive_tool_id(name) == expected

    def test_random_tool_id_format(self):
        assert re.fullmatch(r"unknown-tool-[0-9a-f]{7}", random_tool_id())

    def test_fallback_for_missing_and_duplicate_names(self, id_generator):
        records = [make_tool("A B"), make_tool(""), make_tool("A B"), make_tool("!!!")]
        ids = assign_record_ids(records, id_generator)
        assert ids == ["a-b", "generated-1", "generated-2", "generated-3"]

    def test_fallback_ids_skip_used_values(self):
        values = iter(["taken", "taken", "fresh"])
        records = [make_tool("Taken"), make_tool("")]
        assert assign_record_ids(records, lambda: next(values)) == ["taken", "fresh"]

    def test_records_not_modified(self, sample_tools):
        before = copy.deepcopy(sample_tools)
        assign_record_ids(sample_tools)
        assert sample_tools == before

    def test_default_fallback_is_random(self):
        ids = assign_record_ids([make_tool(""), make_tool("")])
        assert all(record_id.startswith("unknown-tool-") for record_id in ids)
        assert ids[0] != ids[1]


class TestSplitMultiValues:

    def test_splits_on_semicolons(self):
        assert split_multi_values("IUCN Red List; WDPA ;") == ["IUCN Red List", "WDPA"]

    def test_commas_kept(self):
        assert split_multi_values("Satellite, Drones") == ["Satellite, Drones"]

    def test_empty(self):
        assert split_multi_values(None) == []
        assert split_multi_values("") == []


class TestContentHash:

    def test_independent_of_key_order(self):
        first = {TOOL_NAME: "A", DATA_SOURCES: "x"}
        second = {DATA_SOURCES: "x", TOOL_NAME: "A"}
        assert compute_content_hash([first]) == compute_content_hash([second])

    def test_changes_with_content_and_order(self, sample_tools):
        base = compute_content_hash(sample_tools)
        changed = copy.deepcopy(sample_tools)
        changed[0][DATA_SOURCES] = "Drones"

        assert compute_content_hash(changed) != base
        assert compute_content_hash(list(reversed(sample_tools))) != base


class TestToolDataLoader:

    def test_load_text(self, sample_csv):
        records = ToolDataLoader().load_text(sample_csv)

        assert len(records) == 3
        assert records[0][TOOL_NAME] == "Global Forest Watch"
        assert records[0][DATA_SOURCES] == "Satellite imagery, Land cover maps"
        assert records[2][DATA_SOURCES] == "Hydrological models; Satellite data"

    def test_blank_cells_are_empty_strings(self):
        text = "Tool Name,Primary Function,Description\nA,,\n\nB,Mapping,NA\n"
        records = ToolDataLoader().load_text(text)

        assert len(records) == 2
        assert records[0]["Primary Function"] == ""
        assert records[1]["Description"] == "NA"

    def test_empty_text(self):
        assert ToolDataLoader().load_text("") == []
        assert ToolDataLoader().load_text("   \n") == []

    def test_load_file(self, tmp_path, sample_csv):
        path = tmp_path / "tools.csv"
        path.write_text(sample_csv, encoding="utf-8")

        records = ToolDataLoader().load_file(str(path))
        assert [r[TOOL_NAME] for r in records] == ["Global Forest Watch", "Forest Alerts", "Aqueduct"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ToolDataLoader().load_file(str(tmp_path / "missing.csv"))

    def test_malformed_csv(self):
        with pytest.raises(ValueError):
            ToolDataLoader().load_text("a,b\n1,2\n3,4,5,6\n")

    def test_header_only_and_blank_rows(self):
        loader = ToolDataLoader()
        assert loader.load_text("Tool Name,Primary Function\n") == []
        assert loader.load_text("Tool Name,Primary Function\n,\nA,Mapping\n") == [
            {"Tool Name": "A", "Primary Function": "Mapping"}
        ]
