"""
Reporting for the tool clustering pipeline.
Summarizes categories, connections and the dendrogram, and draws overview plots.
"""

import os
import json
import logging
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.decomposition import PCA
from sklearn.metrics import silhouette_score

from preprocessing import DATA_SOURCES, TARGET_USER, split_multi_values
from categorization import CATEGORIES
from clustering import cut_dendrogram, count_merges

logger = logging.getLogger(__name__)


class ClusterReporter:
    """
    Builds tables, summaries and plots for one processed tool set.
    """

    def __init__(self, config: Dict, output_dir: str = "output/reports"):
        """
        Initialize the reporter with configuration settings.

        Args:
            config: Configuration dictionary
            output_dir: Directory for saving reports
        """
        self.config = config
        self.output_dir = output_dir
        self.raw_value_delimiter = config.get("raw_value_delimiter", ";")
        self.cut_height = config.get("dendrogram_cut_height", 0.5)
        self.generate_plots = config.get("generate_plots", True)

        os.makedirs(output_dir, exist_ok=True)

    def category_distribution(self, entities: List[Dict], save_csv: bool = True) -> pd.DataFrame:
        """
        Count tools per category.

        Args:
            entities: Processed entities
            save_csv: Whether to save as CSV

        Returns:
            DataFrame with category, count and share columns
        """
        counts = pd.Series([entity["category"] for entity in entities], dtype=object).value_counts()
        df = pd.DataFrame({"category": list(CATEGORIES)})
        df["count"] = df["category"].map(counts).fillna(0).astype(int)
        total = df["count"].sum()
        df["share"] = df["count"] / total if total else 0.0
        df = df.sort_values(["count", "category"], ascending=[False, True]).reset_index(drop=True)

        if save_csv:
            output_path = os.path.join(self.output_dir, "category_distribution.csv")
            df.to_csv(output_path, index=False)
            logger.info(f"Saved category distribution to {output_path}")

        return df

    def degree_table(self, entities: List[Dict], save_csv: bool = True) -> pd.DataFrame:
        """Connection count per tool, most connected first."""
        df = pd.DataFrame({
            "id": [entity["id"] for entity in entities],
            "name": [entity["name"] for entity in entities],
            "category": [entity["category"] for entity in entities],
            "degree": [len(entity["connections"]) for entity in entities],
        })
        if not df.empty:
            df = df.sort_values(["degree", "id"], ascending=[False, True]).reset_index(drop=True)

        if save_csv:
            output_path = os.path.join(self.output_dir, "tool_degrees.csv")
            df.to_csv(output_path, index=False)

        return df

    def raw_value_counts(self, records: List[Dict], field: str) -> pd.DataFrame:
        """
        Frequency of the sub-values of a raw multi-valued column.

        Args:
            records: Raw tool records
            field: Column name

        Returns:
            DataFrame with value and count columns
        """
        values = []
        for record in records:
            values.extend(split_multi_values(record.get(field), self.raw_value_delimiter))
        if not values:
            return pd.DataFrame(columns=["value", "count"])
        counts = pd.Series(values).value_counts()
        return pd.DataFrame({"value": counts.index, "count": counts.values})

    def dendrogram_summary(self, root: Optional[Dict], labels: List[str]) -> Dict:
        """
        Flat groups obtained by cutting the dendrogram at the configured height.

        Args:
            root: Dendrogram root
            labels: Tool ids indexed by leaf id

        Returns:
            Summary dictionary
        """
        groups = cut_dendrogram(root, self.cut_height)
        named_groups = [[labels[leaf] for leaf in group] for group in groups]
        return {
            "cut_height": self.cut_height,
            "merges": count_merges(root),
            "root_height": root["height"] if root else None,
            "group_count": len(groups),
            "groups": sorted(named_groups, key=lambda g: (-len(g), g)),
        }

    def category_silhouette(self, distance_matrix: np.ndarray, entities: List[Dict]) -> Optional[float]:
        """
        Silhouette score of the category labels over the distance matrix.

        Returns:
            Score, or None when the labels do not allow one
        """
        labels = [entity["category"] for entity in entities]
        n_labels = len(set(labels))
        if distance_matrix is None or not 2 <= n_labels <= len(labels) - 1:
            return None
        return float(silhouette_score(distance_matrix, labels, metric="precomputed"))

    def plot_distance_heatmap(self, distance_matrix: np.ndarray, entities: List[Dict]) -> Optional[str]:
        """Heatmap of pairwise distances, tools ordered by category."""
        if distance_matrix is None or len(entities) < 2:
            return None

        order = sorted(range(len(entities)), key=lambda i: (entities[i]["category"], entities[i]["id"]))
        ordered = distance_matrix[np.ix_(order, order)]
        names = [entities[i]["name"] for i in order]

        size = min(4 + len(entities) * 0.25, 30)
        plt.figure(figsize=(size, size))
        sns.heatmap(ordered, xticklabels=names, yticklabels=names, cmap="viridis_r",
                    vmin=0, vmax=1, square=True)
        plt.title("Tool Distance Matrix")
        plt.tight_layout()

        output_path = os.path.join(self.output_dir, "distance_heatmap.png")
        plt.savefig(output_path)
        plt.close()
        return output_path

    def plot_category_distribution(self, distribution: pd.DataFrame) -> Optional[str]:
        """Horizontal bar chart of tools per category."""
        if distribution.empty or distribution["count"].sum() == 0:
            return None

        plt.figure(figsize=(10, 6))
        sns.barplot(data=distribution, y="category", x="count", color="steelblue")
        plt.title("Tools per Category")
        plt.xlabel("Tools")
        plt.ylabel("Category")
        plt.tight_layout()

        output_path = os.path.join(self.output_dir, "category_distribution.png")
        plt.savefig(output_path)
        plt.close()
        return output_path

    def plot_tool_map(self, distance_matrix: np.ndarray, entities: List[Dict]) -> Optional[str]:
        """2-D PCA projection of each tool's distance profile, colored by category."""
        if distance_matrix is None or len(entities) < 3:
            return None

        coords = PCA(n_components=2).fit_transform(distance_matrix)
        df = pd.DataFrame({
            "x": coords[:, 0],
            "y": coords[:, 1],
            "category": [entity["category"] for entity in entities],
        })

        plt.figure(figsize=(10, 8))
        sns.scatterplot(data=df, x="x", y="y", hue="category", s=60)
        plt.xlabel('Component 1')
        plt.ylabel('Component 2')
        plt.title("Tool Similarity Map")
        plt.legend(bbox_to_anchor=(1.02, 1), loc="upper left")
        plt.tight_layout()

        output_path = os.path.join(self.output_dir, "tool_map.png")
        plt.savefig(output_path)
        plt.close()
        return output_path

    def _write_markdown(self, summary: Dict, distribution: pd.DataFrame) -> str:
        lines = [
            "# Tool Clustering Report",
            "",
            f"Generated: {summary['generated_at']}",
            "",
            f"- Tools: {summary['tools']}",
            f"- Connections: {summary['connections']}",
            f"- Isolated tools: {summary['isolated_tools']}",
            f"- Connected groups: {len(summary['groups'])}",
        ]
        if summary["category_silhouette"] is not None:
            lines.append(f"- Category silhouette: {summary['category_silhouette']:.3f}")

        lines.extend(["", "## Categories", "", "| Category | Tools | Share |", "|---|---|---|"])
        for _, row in distribution.iterrows():
            lines.append(f"| {row['category']} | {row['count']} | {row['share']:.1%} |")

        if summary.get("dendrogram"):
            dendrogram = summary["dendrogram"]
            lines.extend([
                "", "## Dendrogram", "",
                f"{dendrogram['merges']} merges, {dendrogram['group_count']} groups "
                f"at height {dendrogram['cut_height']}.",
            ])

        output_path = os.path.join(self.output_dir, "cluster_report.md")
        with open(output_path, 'w') as f:
            f.write("\n".join(lines) + "\n")
        return output_path

    def generate_report(self, entities: List[Dict], records: List[Dict],
                        distance_matrix: Optional[np.ndarray] = None,
                        dendrogram: Optional[Dict] = None,
                        groups: Optional[List[Dict]] = None) -> Dict:
        """
        Generate all tables, plots and the summary for a processed tool set.

        Args:
            entities: Processed entities
            records: Raw records the entities came from
            distance_matrix: Distance matrix aligned with ``entities``
            dendrogram: Optional dendrogram root
            groups: Optional connected groups from ToolClusterer.extract_groups

        Returns:
            Summary dictionary, also saved as cluster_summary.json
        """
        distribution = self.category_distribution(entities)
        degrees = self.degree_table(entities)

        summary = {
            "generated_at": datetime.now().isoformat(),
            "tools": len(entities),
            "connections": int(degrees["degree"].sum() // 2) if not degrees.empty else 0,
            "isolated_tools": int((degrees["degree"] == 0).sum()) if not degrees.empty else 0,
            "categories": {row["category"]: int(row["count"]) for _, row in distribution.iterrows()},
            "category_silhouette": self.category_silhouette(distance_matrix, entities),
            "top_data_sources": self.raw_value_counts(records, DATA_SOURCES).head(10).to_dict(orient="records"),
            "top_target_users": self.raw_value_counts(records, TARGET_USER).head(10).to_dict(orient="records"),
            "groups": groups or [],
            "plots": {},
        }

        if dendrogram is not None:
            summary["dendrogram"] = self.dendrogram_summary(dendrogram, [e["id"] for e in entities])

        if self.generate_plots:
            plotters = {
                "distance_heatmap": lambda: self.plot_distance_heatmap(distance_matrix, entities),
                "category_distribution": lambda: self.plot_category_distribution(distribution),
                "tool_map": lambda: self.plot_tool_map(distance_matrix, entities),
            }
            for name, plot in plotters.items():
                try:
                    path = plot()
                    if path:
                        summary["plots"][name] = path
                except Exception as e:
                    plt.close("all")
                    logger.warning(f"Could not generate {name} plot: {str(e)}")

        summary_file = os.path.join(self.output_dir, "cluster_summary.json")
        with open(summary_file, 'w') as f:
            json.dump(summary, f, indent=2, default=str)
        self._write_markdown(summary, distribution)

        logger.info(f"Generated cluster report in {self.output_dir}")
        return summary


def generate_cluster_report(config: Dict, entities: List[Dict], records: List[Dict],
                            distance_matrix: Optional[np.ndarray] = None,
                            dendrogram: Optional[Dict] = None,
                            groups: Optional[List[Dict]] = None,
                            output_dir: str = None) -> Dict:
    """
    Generate a cluster report for processed tools.

    Args:
        config: Configuration dictionary
        entities: Processed entities
        records: Raw records
        distance_matrix: Distance matrix aligned with ``entities``
        dendrogram: Optional dendrogram root
        groups: Optional connected groups
        output_dir: Directory for saving reports

    Returns:
        Report summary
    """
    if output_dir is None:
        output_dir = os.path.join(config.get("output_dir", "output"), "reports")

    reporter = ClusterReporter(config, output_dir)
    return reporter.generate_report(entities, records, distance_matrix, dendrogram, groups)
