import logging
import math
import re
from typing import Dict, Iterable, List, Optional, Set

import numpy as np
from tqdm import tqdm

from preprocessing import (
    PRIMARY_FUNCTION, DATA_SOURCES, TARGET_USER, ENVIRONMENT_TYPE
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_FEATURE_WEIGHTS = {
    PRIMARY_FUNCTION: 0.3,
    DATA_SOURCES: 0.25,
    TARGET_USER: 0.25,
    ENVIRONMENT_TYPE: 0.2,
}

# Order in which features are accumulated
FEATURE_ORDER = [DATA_SOURCES, PRIMARY_FUNCTION, TARGET_USER, ENVIRONMENT_TYPE]

# Categorical fields are compared on commas, not the raw ';' separator
CATEGORY_DELIMITER = ","

EXCLUDED_TERM = "biodiversity"

SKIP_MODE_FIELD = "field"
SKIP_MODE_SUBSTRING = "substring"
SKIP_MODES = (SKIP_MODE_FIELD, SKIP_MODE_SUBSTRING)

_PUNCTUATION_RE = re.compile(r'[.,/#!$%^&*;:{}=\-_`~()]')
_NON_WORD_RE = re.compile(r'[\W_]+')


def tokenize(text: Optional[str]) -> List[str]:
    """
    Split free text into comparable lowercase tokens.

    Args:
        text: Input text

    Returns:
        Tokens longer than two characters, in source order
    """
    if not text:
        return []
    cleaned = _PUNCTUATION_RE.sub('', str(text).lower())
    return [token for token in cleaned.split() if len(token) > 2]


def normalize_category_set(text: Optional[str], delimiter: str = CATEGORY_DELIMITER) -> Set[str]:
    """
    Turn a multi-valued categorical field into a set of normalized values.

    Args:
        text: Field text
        delimiter: Value separator

    Returns:
        Set of trimmed, lowercased, non-empty values
    """
    if not text:
        return set()
    values = (part.strip().lower() for part in str(text).split(delimiter))
    return {value for value in values if value}


def jaccard_index(first: Iterable[str], second: Iterable[str]) -> float:
    """Jaccard index of two collections, 0.0 when both are empty."""
    first_set = set(first)
    second_set = set(second)
    union = first_set | second_set
    if not union:
        return 0.0
    return len(first_set & second_set) / len(union)


def is_excluded_only(value: str) -> bool:
    """True when a field says nothing beyond the excluded term."""
    lowered = value.lower()
    if EXCLUDED_TERM not in lowered:
        return False
    return not _NON_WORD_RE.sub('', lowered.replace(EXCLUDED_TERM, ''))


def should_skip_feature(value1: str, value2: str, skip_mode: str = SKIP_MODE_FIELD) -> bool:
    """
    Decide whether a feature is left out of a pair's similarity entirely.

    Args:
        value1: Field value of the first record
        value2: Field value of the second record
        skip_mode: 'field' skips only when both values consist of the excluded
            term alone; 'substring' skips whenever both values mention it

    Returns:
        True if the feature contributes neither score nor weight
    """
    if skip_mode == SKIP_MODE_SUBSTRING:
        return EXCLUDED_TERM in value1.lower() and EXCLUDED_TERM in value2.lower()
    return is_excluded_only(value1) and is_excluded_only(value2)


def validate_weights(weights: Optional[Dict[str, float]]) -> Dict[str, float]:
    """
    Check a feature weight mapping and return a clean float copy.

    Args:
        weights: Mapping of the four feature names to non-negative weights,
            or None for the defaults

    Returns:
        Validated weights

    Raises:
        ValueError: If keys are missing or unknown, or a weight is invalid
    """
    if weights is None:
        return dict(DEFAULT_FEATURE_WEIGHTS)

    missing = [name for name in DEFAULT_FEATURE_WEIGHTS if name not in weights]
    unknown = [name for name in weights if name not in DEFAULT_FEATURE_WEIGHTS]
    if missing or unknown:
        raise ValueError(
            f"Feature weights must define exactly {', '.join(DEFAULT_FEATURE_WEIGHTS)}; "
            f"missing: {missing}, unknown: {unknown}"
        )

    validated = {}
    for name, weight in weights.items():
        if isinstance(weight, bool):
            raise ValueError(f"Weight for '{name}' must be a number, got {weight!r}")
        try:
            value = float(weight)
        except (TypeError, ValueError):
            raise ValueError(f"Weight for '{name}' must be a number, got {weight!r}")
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"Weight for '{name}' must be finite and non-negative, got {weight!r}")
        validated[name] = value
    return validated


def _field_text(record: Dict, field: str) -> str:
    value = record.get(field)
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return ""
    return str(value)


def similarity(record1: Dict, record2: Dict, weights: Optional[Dict[str, float]] = None,
               skip_mode: str = SKIP_MODE_FIELD,
               category_delimiter: str = CATEGORY_DELIMITER) -> float:
    """
    Weighted Jaccard similarity of two tool records.

    Args:
        record1: First tool record
        record2: Second tool record
        weights: Feature weights, defaults to DEFAULT_FEATURE_WEIGHTS
        skip_mode: Rule for leaving a feature out, see should_skip_feature
        category_delimiter: Separator for categorical fields

    Returns:
        Similarity in [0, 1], normalized by the weight of compared features
    """
    weights = DEFAULT_FEATURE_WEIGHTS if weights is None else weights

    score = 0.0
    total_weight = 0.0

    for feature in FEATURE_ORDER:
        weight = weights[feature]
        value1 = _field_text(record1, feature)
        value2 = _field_text(record2, feature)

        if should_skip_feature(value1, value2, skip_mode):
            continue

        total_weight += weight

        if feature == PRIMARY_FUNCTION:
            tokens1 = [t for t in tokenize(value1) if t != EXCLUDED_TERM]
            tokens2 = [t for t in tokenize(value2) if t != EXCLUDED_TERM]
            score += weight * jaccard_index(tokens1, tokens2)
        else:
            set1 = normalize_category_set(value1, category_delimiter) - {EXCLUDED_TERM}
            set2 = normalize_category_set(value2, category_delimiter) - {EXCLUDED_TERM}
            score += weight * jaccard_index(set1, set2)

    if total_weight <= 0:
        return 0.0
    return min(1.0, max(0.0, score / total_weight))


def build_distance_matrix(records: List[Dict], weights: Optional[Dict[str, float]] = None,
                          skip_mode: str = SKIP_MODE_FIELD,
                          category_delimiter: str = CATEGORY_DELIMITER,
                          progress_min_pairs: int = 50000) -> np.ndarray:
    """
    Pairwise distance (1 - similarity) matrix for a record set.

    Args:
        records: Tool records
        weights: Feature weights
        skip_mode: Rule for leaving a feature out
        category_delimiter: Separator for categorical fields
        progress_min_pairs: Show a progress bar from this many pairs on

    Returns:
        Symmetric (n, n) float array with a zero diagonal
    """
    n = len(records)
    matrix = np.zeros((n, n), dtype=np.float64)
    if n < 2:
        return matrix

    n_pairs = n * (n - 1) // 2
    logger.info(f"Computing distance matrix for {n} records ({n_pairs} pairs)")

    with tqdm(total=n_pairs, desc="Computing tool similarities",
              disable=n_pairs < progress_min_pairs) as progress:
        for i in range(n):
            for j in range(i + 1, n):
                sim = similarity(records[i], records[j], weights,
                                 skip_mode=skip_mode, category_delimiter=category_delimiter)
                distance = 1.0 - sim
                matrix[i, j] = distance
                matrix[j, i] = distance
            progress.update(n - i - 1)

    np.clip(matrix, 0.0, 1.0, out=matrix)
    return matrix


class FeatureEngineer:
    """
    Compares tool records using the configured feature weights.
    """
    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize the feature engineer with configuration settings.

        Args:
            config: Dictionary containing configuration parameters
        """
        self.config = config or {}
        self.feature_weights = validate_weights(self.config.get("feature_weights"))
        self.skip_mode = self.config.get("skip_mode", SKIP_MODE_FIELD)
        self.category_delimiter = self.config.get("category_delimiter", CATEGORY_DELIMITER)
        self.progress_min_pairs = self.config.get("progress_min_pairs", 50000)

        if self.skip_mode not in SKIP_MODES:
            raise ValueError(f"skip_mode must be one of {SKIP_MODES}, got {self.skip_mode!r}")

    def compute_similarity(self, record1: Dict, record2: Dict) -> float:
        """Similarity of two records under this engineer's settings."""
        return similarity(record1, record2, self.feature_weights,
                          skip_mode=self.skip_mode,
                          category_delimiter=self.category_delimiter)

    def compute_feature_breakdown(self, record1: Dict, record2: Dict) -> Dict[str, Optional[float]]:
        """
        Per-feature Jaccard scores for a pair, None where a feature is skipped.

        Args:
            record1: First tool record
            record2: Second tool record

        Returns:
            Dictionary of feature name to Jaccard index
        """
        breakdown = {}
        for feature in FEATURE_ORDER:
            single = {name: (1.0 if name == feature else 0.0) for name in DEFAULT_FEATURE_WEIGHTS}
            value1 = _field_text(record1, feature)
            value2 = _field_text(record2, feature)
            if should_skip_feature(value1, value2, self.skip_mode):
                breakdown[feature] = None
            else:
                breakdown[feature] = similarity(record1, record2, single,
                                                skip_mode=self.skip_mode,
                                                category_delimiter=self.category_delimiter)
        return breakdown

    def build_distance_matrix(self, records: List[Dict]) -> np.ndarray:
        """Distance matrix for ``records`` under this engineer's settings."""
        return build_distance_matrix(records, self.feature_weights,
                                     skip_mode=self.skip_mode,
                                     category_delimiter=self.category_delimiter,
                                     progress_min_pairs=self.progress_min_pairs)
