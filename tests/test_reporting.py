"""Tests for the cluster reporter."""

import json
import os

import numpy as np
import pytest

from categorization import CATEGORIES
from cluster_reporting import ClusterReporter, generate_cluster_report
from main_pipeline import process_with_dendrogram
from preprocessing import DATA_SOURCES


@pytest.fixture
def processed(sample_tools):
    entities, root, matrix = process_with_dendrogram(sample_tools, threshold=0.7)
    return entities, root, matrix


class TestClusterReporter:

    def test_category_distribution(self, tmp_path, processed):
        entities, _, _ = processed
        reporter = ClusterReporter({}, str(tmp_path))
        df = reporter.category_distribution(entities)

        assert sorted(df["category"]) == sorted(CATEGORIES)
        assert df["count"].sum() == len(entities)
        assert df["share"].sum() == pytest.approx(1.0)
        assert os.path.exists(tmp_path / "category_distribution.csv")

    def test_degree_table(self, tmp_path, processed):
        entities, _, _ = processed
        df = ClusterReporter({}, str(tmp_path)).degree_table(entities, save_csv=False)

        assert list(df["degree"][:2]) == [1, 1]
        assert set(df["id"][:2]) == {"global-forest-watch", "forest-alerts"}

    def test_raw_value_counts_splits_on_semicolon(self, tmp_path):
        records = [
            {DATA_SOURCES: "Satellite imagery; Field surveys"},
            {DATA_SOURCES: "Satellite imagery"},
            {DATA_SOURCES: ""},
        ]
        df = ClusterReporter({}, str(tmp_path)).raw_value_counts(records, DATA_SOURCES)

        assert dict(zip(df["value"], df["count"])) == {"Satellite imagery": 2, "Field surveys": 1}

    def test_raw_value_counts_empty(self, tmp_path):
        df = ClusterReporter({}, str(tmp_path)).raw_value_counts([], DATA_SOURCES)
        assert df.empty

    def test_dendrogram_summary(self, tmp_path, processed):
        entities, root, _ = processed
        reporter = ClusterReporter({"dendrogram_cut_height": 0.0}, str(tmp_path))
        summary = reporter.dendrogram_summary(root, [entity["id"] for entity in entities])

        assert summary["merges"] == len(entities) - 1
        assert sorted(summary["groups"][0]) == ["forest-alerts", "global-forest-watch"]
        assert sum(len(group) for group in summary["groups"]) == len(entities)

    def test_silhouette_requires_two_labels(self, tmp_path):
        reporter = ClusterReporter({}, str(tmp_path))
        entities = [{"category": "Other"}, {"category": "Other"}, {"category": "Other"}]
        assert reporter.category_silhouette(np.zeros((3, 3)), entities) is None

    def test_silhouette(self, tmp_path):
        reporter = ClusterReporter({}, str(tmp_path))
        matrix = np.array([
            [0.0, 0.1, 0.9, 0.9],
            [0.1, 0.0, 0.9, 0.9],
            [0.9, 0.9, 0.0, 0.1],
            [0.9, 0.9, 0.1, 0.0],
        ])
        entities = [{"category": c} for c in ("A", "A", "B", "B")]
        assert reporter.category_silhouette(matrix, entities) > 0.5


class TestGenerateReport:

    def test_without_plots(self, tmp_path, sample_tools, processed):
        entities, root, matrix = processed
        config = {"output_dir": str(tmp_path), "generate_plots": False}
        summary = generate_cluster_report(config, entities, sample_tools, matrix, root)

        report_dir = tmp_path / "reports"
        assert summary["tools"] == len(entities)
        assert summary["connections"] == 1
        assert summary["isolated_tools"] == len(entities) - 2
        assert summary["plots"] == {}
        assert "dendrogram" in summary
        with open(report_dir / "cluster_summary.json") as f:
            assert json.load(f)["tools"] == len(entities)
        assert os.path.exists(report_dir / "cluster_report.md")

    def test_with_plots(self, tmp_path, sample_tools, processed):
        entities, root, matrix = processed
        reporter = ClusterReporter({"generate_plots": True}, str(tmp_path))
        summary = reporter.generate_report(entities, sample_tools, matrix, root, groups=[])

        assert set(summary["plots"]) == {"distance_heatmap", "category_distribution", "tool_map"}
        for path in summary["plots"].values():
            assert os.path.exists(path)

    def test_empty_input(self, tmp_path):
        summary = ClusterReporter({"generate_plots": True}, str(tmp_path)).generate_report([], [])

        assert summary["tools"] == 0
        assert summary["connections"] == 0
        assert summary["plots"] == {}
