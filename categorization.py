"""
Keyword-based category assignment for tool records.

Each record gets exactly one label. Rules are evaluated in order and the first
matching rule wins, so a tool mentioning both finance and assessment terms is
filed under Finance & Investment.
"""

import logging
from collections import Counter
from typing import Callable, Dict, List, Tuple

from preprocessing import (
    TOOL_NAME, PRIMARY_FUNCTION, DATA_SOURCES, TARGET_USER,
    ENVIRONMENT_TYPE, DESCRIPTION
)

logger = logging.getLogger(__name__)

FINANCE = "Finance & Investment"
ASSESSMENT = "Assessment & Measurement"
DATA = "Data & Monitoring"
PLANNING = "Planning & Strategy"
POLICY = "Policy & Governance"
EDUCATION = "Education & Guidance"
MARINE = "Marine Ecosystems"
FRESHWATER = "Freshwater Resources"
TERRESTRIAL = "Terrestrial & Forests"
AGRICULTURE = "Agriculture & Land Use"
OTHER = "Other"

CATEGORIES = (
    FINANCE, ASSESSMENT, DATA, PLANNING, POLICY, EDUCATION,
    MARINE, FRESHWATER, TERRESTRIAL, AGRICULTURE, OTHER,
)

DEFAULT_ENVIRONMENT_TYPE = "Multiple"

# Matched as substrings of the lowercased text
FINANCE_KEYWORDS = ['financ', 'invest', 'fund', 'capital', 'monetary', 'economic',
                    'budget', 'cost', 'profit']
ASSESSMENT_KEYWORDS = ['assess', 'evaluat', 'measur', 'metric', 'benchmark', 'indicator',
                       'score', 'rating', 'footprint', 'impact']
DATA_KEYWORDS = ['data', 'monitor', 'report', 'collect', 'database', 'analytics',
                 'information', 'track', 'survey', 'inventory']
PLANNING_KEYWORDS = ['plan', 'strateg', 'manag', 'decision', 'framework', 'roadmap',
                     'implement', 'action', 'develop']
POLICY_KEYWORDS = ['policy', 'regulat', 'govern', 'compliance', 'standard', 'law',
                   'legal', 'legislat']
EDUCATION_KEYWORDS = ['educat', 'train', 'guid', 'learn', 'teach', 'instruct',
                      'knowledge', 'resource', 'toolkit']
MARINE_KEYWORDS = ['marine', 'ocean', 'sea', 'coastal', 'fish']
FRESHWATER_KEYWORDS = ['freshwater', 'water', 'river', 'lake', 'aquatic', 'wetland']
TERRESTRIAL_KEYWORDS = ['forest', 'terrestrial', 'land', 'soil', 'tree']
AGRICULTURE_KEYWORDS = ['agricultur', 'farm', 'crop', 'livestock', 'food']

# Case-sensitive markers in the raw Environment Type value
MARINE_ENVIRONMENTS = ['Marine']
FRESHWATER_ENVIRONMENTS = ['Freshwater']
TERRESTRIAL_ENVIRONMENTS = ['Terrestrial', 'Forests']
AGRICULTURE_ENVIRONMENTS = ['Agricultural']

FALLBACK_ASSESSMENT_KEYWORDS = ['assess', 'measur', 'evaluat']
BIODIVERSITY_TEXT = "biodiversity"

# Tools mentioning any of these stay in Other
UNIQUE_TOOL_KEYWORDS = [
    'blockchain', 'ai', 'artificial intelligence', 'machine learning',
    'certification', 'labeling', 'virtual reality', 'augmented reality',
    'simulation', 'game', 'offset', 'credit', 'compensation'
]

ClassificationPredicate = Callable[[str, str], bool]


def _contains_any(text: str, keywords: List[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def _keywords(keywords: List[str]) -> ClassificationPredicate:
    return lambda text, environment: _contains_any(text, keywords)


def _environment_or_keywords(environments: List[str], keywords: List[str]) -> ClassificationPredicate:
    return lambda text, environment: (_contains_any(environment, environments)
                                      or _contains_any(text, keywords))


CATEGORY_RULES: List[Tuple[ClassificationPredicate, str]] = [
    (_keywords(FINANCE_KEYWORDS), FINANCE),
    (_keywords(ASSESSMENT_KEYWORDS), ASSESSMENT),
    (_keywords(DATA_KEYWORDS), DATA),
    (_keywords(PLANNING_KEYWORDS), PLANNING),
    (_keywords(POLICY_KEYWORDS), POLICY),
    (_keywords(EDUCATION_KEYWORDS), EDUCATION),
    (_environment_or_keywords(MARINE_ENVIRONMENTS, MARINE_KEYWORDS), MARINE),
    (_environment_or_keywords(FRESHWATER_ENVIRONMENTS, FRESHWATER_KEYWORDS), FRESHWATER),
    (_environment_or_keywords(TERRESTRIAL_ENVIRONMENTS, TERRESTRIAL_KEYWORDS), TERRESTRIAL),
    (_environment_or_keywords(AGRICULTURE_ENVIRONMENTS, AGRICULTURE_KEYWORDS), AGRICULTURE),
]


def _text(record: Dict, field: str) -> str:
    value = record.get(field)
    if value is None or value != value:  # None or NaN
        return ""
    return str(value)


def classification_text(record: Dict) -> str:
    """Lowercased blob of the fields used for classification."""
    fields = [PRIMARY_FUNCTION, TARGET_USER, DATA_SOURCES, DESCRIPTION, TOOL_NAME]
    return " ".join(_text(record, field) for field in fields).lower()


def classify(record: Dict) -> str:
    """
    Assign a single category label to a tool record.

    Args:
        record: Tool record

    Returns:
        One of CATEGORIES
    """
    text = classification_text(record)
    environment = _text(record, ENVIRONMENT_TYPE) or DEFAULT_ENVIRONMENT_TYPE

    category = OTHER
    for predicate, label in CATEGORY_RULES:
        if predicate(text, environment):
            category = label
            break

    if category == OTHER:
        if BIODIVERSITY_TEXT in text and _contains_any(text, FALLBACK_ASSESSMENT_KEYWORDS):
            category = ASSESSMENT
        elif not _contains_any(text, UNIQUE_TOOL_KEYWORDS):
            category = ASSESSMENT

    return category


def category_counts(records: List[Dict]) -> Counter:
    """Number of records per category, every category present."""
    counts = Counter({category: 0 for category in CATEGORIES})
    counts.update(classify(record) for record in records)
    return counts
