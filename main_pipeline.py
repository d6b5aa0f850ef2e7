import os
import copy
import json
import hashlib
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import yaml

from preprocessing import TOOL_NAME, ToolDataLoader, assign_record_ids, compute_content_hash
from feature_engineering import FeatureEngineer, validate_weights, build_distance_matrix
from clustering import (
    ToolClusterer, generate_connections, perform_agglomerative_clustering,
    build_connection_graph, dendrogram_to_dict, count_merges
)
from categorization import classify

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.7
DEFAULT_RELEVANCE = 0.75


def _validate_threshold(threshold) -> float:
    if isinstance(threshold, bool):
        raise ValueError(f"Similarity threshold must be a number, got {threshold!r}")
    try:
        value = float(threshold)
    except (TypeError, ValueError):
        raise ValueError(f"Similarity threshold must be a number, got {threshold!r}")
    if value != value:
        raise ValueError("Similarity threshold must not be NaN")
    return value


def _assemble_entities(records: List[Dict], record_ids: List[str],
                       connections: Dict[str, List[str]], relevance: float) -> List[Dict]:
    entities = []
    for record, record_id in zip(records, record_ids):
        entity = dict(record)
        name = record.get(TOOL_NAME)
        entity.update({
            "id": record_id,
            "name": name if name else f"Unknown Tool {record_id}",
            "category": classify(record),
            "relevance": relevance,
            "connections": list(connections.get(record_id, [])),
        })
        entities.append(entity)
    return entities


def process_with_dendrogram(records: List[Dict], threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
                            weights: Optional[Dict[str, float]] = None,
                            relevance: float = DEFAULT_RELEVANCE,
                            id_generator: Optional[Callable[[], str]] = None,
                            feature_engineer: Optional[FeatureEngineer] = None
                            ) -> Tuple[List[Dict], Optional[Dict], np.ndarray]:
    """
    Run the clustering pipeline and also build the dendrogram.

    Args:
        records: Tool records
        threshold: Minimum similarity for a connection
        weights: Feature weights, defaults when None
        relevance: Relevance value given to every entity
        id_generator: Fallback id source for unnamed or duplicate tools
        feature_engineer: Pre-configured engineer, overrides ``weights``

    Returns:
        Tuple of (entities, dendrogram root, distance matrix)
    """
    threshold = _validate_threshold(threshold)
    if feature_engineer is None:
        feature_engineer = FeatureEngineer({"feature_weights": validate_weights(weights)})

    if not records:
        return [], None, np.zeros((0, 0), dtype=np.float64)

    record_ids = assign_record_ids(records, id_generator)
    distance_matrix = feature_engineer.build_distance_matrix(records)
    connections = generate_connections(records, distance_matrix, threshold, record_ids)
    entities = _assemble_entities(records, record_ids, connections, relevance)
    root = perform_agglomerative_clustering(distance_matrix, record_ids)

    return entities, root, distance_matrix


def process(records: List[Dict], threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
            weights: Optional[Dict[str, float]] = None,
            relevance: float = DEFAULT_RELEVANCE,
            id_generator: Optional[Callable[[], str]] = None) -> List[Dict]:
    """
    Turn tool records into categorized entities with similarity connections.

    Args:
        records: Tool records
        threshold: Minimum similarity for a connection
        weights: Feature weights, defaults when None
        relevance: Relevance value given to every entity
        id_generator: Fallback id source for unnamed or duplicate tools

    Returns:
        One entity per record, in input order
    """
    threshold = _validate_threshold(threshold)
    weights = validate_weights(weights)

    if not records:
        return []

    record_ids = assign_record_ids(records, id_generator)
    distance_matrix = build_distance_matrix(records, weights)
    connections = generate_connections(records, distance_matrix, threshold, record_ids)
    return _assemble_entities(records, record_ids, connections, relevance)


def process_csv_content(csv_content: str, threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
                        weights: Optional[Dict[str, float]] = None) -> List[Dict]:
    """
    Parse CSV text and run the clustering pipeline on it.

    Args:
        csv_content: CSV document with a header row
        threshold: Minimum similarity for a connection
        weights: Feature weights, defaults when None

    Returns:
        Processed entities
    """
    try:
        records = ToolDataLoader().load_text(csv_content)
        return process(records, threshold, weights)
    except Exception as e:
        logger.error(f"Error processing tools data: {str(e)}")
        raise


class ResultCache:
    """
    Processed results keyed by record content, threshold and weights.
    """
    def __init__(self, cache_dir: Optional[str] = None):
        """
        Initialize the cache.

        Args:
            cache_dir: Directory for persisted entries, memory only when None
        """
        self.cache_dir = cache_dir
        self._entries: Dict[str, List[Dict]] = {}
        self.hits = 0
        self.misses = 0

        if cache_dir:
            os.makedirs(cache_dir, exist_ok=True)

    @staticmethod
    def make_key(records: List[Dict], threshold: float, weights: Optional[Dict[str, float]],
                 **settings) -> str:
        """Cache key for a processing request, extra settings included."""
        payload = json.dumps({
            "content": compute_content_hash(records),
            "threshold": float(threshold),
            "weights": validate_weights(weights),
            "settings": settings,
        }, sort_keys=True)
        return hashlib.md5(payload.encode('utf-8')).hexdigest()

    def _path(self, key: str) -> str:
        return os.path.join(self.cache_dir, f"{key}.json")

    def get(self, key: str) -> Optional[List[Dict]]:
        """Cached entities for ``key``, or None."""
        if key in self._entries:
            self.hits += 1
            return copy.deepcopy(self._entries[key])

        if self.cache_dir and os.path.exists(self._path(key)):
            try:
                with open(self._path(key), 'r') as f:
                    entities = json.load(f)
                self._entries[key] = entities
                self.hits += 1
                logger.info(f"Loaded cached result {key}")
                return copy.deepcopy(entities)
            except (OSError, ValueError) as e:
                logger.warning(f"Error loading cached result {key}: {str(e)}")

        self.misses += 1
        return None

    def put(self, key: str, entities: List[Dict]) -> None:
        """Store a copy of entities under ``key``."""
        self._entries[key] = copy.deepcopy(entities)
        if self.cache_dir:
            try:
                with open(self._path(key), 'w') as f:
                    json.dump(entities, f)
            except (OSError, TypeError) as e:
                logger.warning(f"Error saving cached result {key}: {str(e)}")

    def clear(self) -> None:
        """Drop in-memory entries."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class ToolClusteringPipeline:
    """
    Main pipeline for clustering a tool catalog.
    """
    def __init__(self, config_path: Optional[str] = None, config: Optional[Dict] = None,
                 overrides: Optional[Dict] = None):
        """
        Initialize the pipeline with configuration.

        Args:
            config_path: Path to a YAML configuration file
            config: Configuration dictionary, used instead of a file
            overrides: Values replacing those from the file or dictionary
        """
        if config is not None:
            self.config = self._apply_defaults(dict(config))
        elif config_path is not None:
            self.config = self._load_config(config_path)
        else:
            self.config = self._apply_defaults({})

        if overrides:
            self.config.update(overrides)

        self._validate_config()

        self.output_dir = self.config["output_dir"]
        os.makedirs(self.output_dir, exist_ok=True)

        self.loader = ToolDataLoader(self.config)
        self.feature_engineer = FeatureEngineer(self.config)
        self.clusterer = ToolClusterer(self.config)

        cache_dir = os.path.join(self.output_dir, "cache") if self.config["persist_cache"] else None
        self.cache = ResultCache(cache_dir) if self.config["enable_cache"] else None

        self.records: List[Dict] = []
        self.record_ids: List[str] = []
        self.distance_matrix: Optional[np.ndarray] = None
        self.entities: List[Dict] = []
        self.dendrogram: Optional[Dict] = None
        self.stats: Dict = {}

        logger.info(f"Pipeline initialized, output directory: {self.output_dir}")

    def _apply_defaults(self, config: Dict) -> Dict:
        config.setdefault("input_file", "data/tools.csv")
        config.setdefault("output_dir", "output")
        config.setdefault("similarity_threshold", DEFAULT_SIMILARITY_THRESHOLD)
        config.setdefault("feature_weights", None)
        config.setdefault("default_relevance", DEFAULT_RELEVANCE)
        config.setdefault("skip_mode", "field")
        config.setdefault("category_delimiter", ",")
        config.setdefault("raw_value_delimiter", ";")
        config.setdefault("enable_cache", True)
        config.setdefault("persist_cache", False)
        config.setdefault("progress_min_pairs", 50000)
        config.setdefault("dendrogram_cut_height", 0.5)
        config.setdefault("generate_plots", True)
        config.setdefault("worker_threads", 1)
        return config

    def _load_config(self, config_path: str) -> Dict:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Configuration dictionary
        """
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return self._apply_defaults(config)

    def _validate_config(self) -> None:
        """Validate configuration values."""
        self.config["similarity_threshold"] = _validate_threshold(self.config["similarity_threshold"])
        self.config["feature_weights"] = validate_weights(self.config["feature_weights"])

        if self.config["skip_mode"] not in ("field", "substring"):
            raise ValueError("skip_mode must be either 'field' or 'substring'")
        if not self.config["category_delimiter"]:
            raise ValueError("category_delimiter must not be empty")

    @property
    def threshold(self) -> float:
        return self.config["similarity_threshold"]

    def load_records(self, input_file: Optional[str] = None) -> List[Dict]:
        """Load tool records from the configured CSV file."""
        input_file = input_file or self.config["input_file"]
        self.records = self.loader.load_file(input_file)
        self.stats["records"] = len(self.records)
        return self.records

    def run(self, records: Optional[List[Dict]] = None) -> List[Dict]:
        """
        Process records into entities, using the cache when enabled.

        Args:
            records: Tool records, the loaded records when None

        Returns:
            Processed entities
        """
        if records is not None:
            self.records = records
        self.stats["records"] = len(self.records)

        key = None
        if self.cache is not None:
            key = ResultCache.make_key(
                self.records, self.threshold, self.config["feature_weights"],
                skip_mode=self.config["skip_mode"],
                category_delimiter=self.config["category_delimiter"],
                relevance=self.config["default_relevance"],
            )
            cached = self.cache.get(key)
            if cached is not None:
                logger.info(f"Using cached result for {len(self.records)} tools")
                self.entities = cached
                self.record_ids = [entity["id"] for entity in cached]
                self.distance_matrix = None
                self.stats["processing_seconds"] = 0.0
                self.stats["connections"] = self.clusterer.summarize_degrees(
                    {entity["id"]: entity["connections"] for entity in cached}
                )
                return self.entities

        start = datetime.now()
        self.record_ids = assign_record_ids(self.records)
        self.distance_matrix = self.feature_engineer.build_distance_matrix(self.records)
        connections = self.clusterer.connect(self.records, self.distance_matrix, self.record_ids)
        self.entities = _assemble_entities(self.records, self.record_ids, connections,
                                           self.config["default_relevance"])

        self.stats["processing_seconds"] = (datetime.now() - start).total_seconds()
        self.stats["connections"] = self.clusterer.summarize_degrees(connections)
        logger.info(f"Processed {len(self.entities)} tools in {self.stats['processing_seconds']:.2f}s")

        if self.cache is not None:
            self.cache.put(key, self.entities)

        return self.entities

    def _ensure_distance_matrix(self) -> np.ndarray:
        if self.distance_matrix is None or self.distance_matrix.shape[0] != len(self.records):
            self.distance_matrix = self.feature_engineer.build_distance_matrix(self.records)
        if len(self.record_ids) != len(self.records):
            self.record_ids = assign_record_ids(self.records)
        return self.distance_matrix

    def build_dendrogram(self) -> Optional[Dict]:
        """Build the dendrogram over the current records."""
        matrix = self._ensure_distance_matrix()
        self.dendrogram = self.clusterer.build_dendrogram(matrix, self.record_ids)
        self.stats["dendrogram_merges"] = count_merges(self.dendrogram)
        return self.dendrogram

    def connection_graph(self):
        """networkx graph of the current entities."""
        matrix = self._ensure_distance_matrix()
        connections = {entity["id"]: entity["connections"] for entity in self.entities}
        return build_connection_graph(self.record_ids, connections, matrix, self.records)

    def save_results(self) -> Dict[str, str]:
        """
        Write entities, connections and the dendrogram to the output directory.

        Returns:
            Mapping of artifact name to file path
        """
        paths = {}

        tools_file = os.path.join(self.output_dir, "tools.json")
        with open(tools_file, 'w') as f:
            json.dump(self.entities, f, indent=2)
        paths["tools"] = tools_file

        connections_file = os.path.join(self.output_dir, "connections.json")
        with open(connections_file, 'w') as f:
            json.dump({entity["id"]: entity["connections"] for entity in self.entities}, f, indent=2)
        paths["connections"] = connections_file

        if self.dendrogram is not None:
            dendrogram_file = os.path.join(self.output_dir, "dendrogram.json")
            with open(dendrogram_file, 'w') as f:
                json.dump(dendrogram_to_dict(self.dendrogram), f, indent=2)
            paths["dendrogram"] = dendrogram_file

        stats_file = os.path.join(self.output_dir, "pipeline_stats.json")
        with open(stats_file, 'w') as f:
            json.dump(dict(self.stats, generated_at=datetime.now().isoformat()), f, indent=2)
        paths["stats"] = stats_file

        logger.info(f"Saved results for {len(self.entities)} tools to {self.output_dir}")
        return paths
