import io
import os
import re
import json
import uuid
import hashlib
import logging
from typing import Callable, Dict, List, Optional

import pandas as pd

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Column names as they appear in the tool catalog CSV
TOOL_NAME = "Tool Name"
PRIMARY_FUNCTION = "Primary Function"
DATA_SOURCES = "Data Sources"
TARGET_USER = "Target User/Client"
ENVIRONMENT_TYPE = "Environment Type"
DESCRIPTION = "Description"

RECORD_FIELDS = [
    TOOL_NAME, PRIMARY_FUNCTION, DATA_SOURCES,
    TARGET_USER, ENVIRONMENT_TYPE, DESCRIPTION
]

# Separator used between sub-values in raw catalog cells
RAW_VALUE_DELIMITER = ";"

_WHITESPACE_RE = re.compile(r'\s+')
_INVALID_ID_CHARS_RE = re.compile(r'[^a-z0-9-]')


def random_tool_id() -> str:
    """Return a fallback identifier for a tool without a usable name."""
    return f"unknown-tool-{uuid.uuid4().hex[:7]}"


def derive_tool_id(name: Optional[str]) -> str:
    """
    Derive a stable identifier from a tool name.

    Args:
        name: Tool name, may be None or blank

    Returns:
        Lowercased, hyphenated identifier, or an empty string when
        nothing usable remains
    """
    if not name or pd.isna(name):
        return ""
    slug = _WHITESPACE_RE.sub('-', str(name).lower())
    return _INVALID_ID_CHARS_RE.sub('', slug)


def assign_record_ids(records: List[Dict],
                      id_generator: Optional[Callable[[], str]] = None) -> List[str]:
    """
    Compute one identifier per record without modifying the records.

    Missing names, names that slug to nothing and names that collide with an
    earlier record all receive an id from ``id_generator``.

    Args:
        records: Tool records
        id_generator: Zero-argument callable producing fallback ids

    Returns:
        List of identifiers aligned with ``records``
    """
    id_generator = id_generator or random_tool_id
    ids = []
    seen = set()

    for record in records:
        record_id = derive_tool_id(record.get(TOOL_NAME))
        if not record_id or record_id in seen:
            if record_id:
                logger.warning(f"Duplicate tool id '{record_id}', assigning fallback id")
            record_id = id_generator()
            while record_id in seen:
                record_id = id_generator()
        seen.add(record_id)
        ids.append(record_id)

    return ids


def split_multi_values(value: Optional[str], delimiter: str = RAW_VALUE_DELIMITER) -> List[str]:
    """
    Split a raw multi-valued catalog cell into trimmed sub-values.

    Args:
        value: Raw cell text
        delimiter: Sub-value separator

    Returns:
        Non-empty sub-values in source order
    """
    if not value or pd.isna(value):
        return []
    return [part.strip() for part in str(value).split(delimiter) if part.strip()]


def compute_content_hash(records: List[Dict]) -> str:
    """
    Hash the content of a record set, independent of dict key order.

    Args:
        records: Tool records

    Returns:
        Hex digest of the normalized records
    """
    normalized = [
        {str(key): "" if value is None else str(value) for key, value in sorted(record.items())}
        for record in records
    ]
    payload = json.dumps(normalized, sort_keys=True, ensure_ascii=False)
    return hashlib.md5(payload.encode('utf-8')).hexdigest()


class ToolDataLoader:
    """
    Loads tool catalog CSV data into plain record dictionaries.
    """
    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize the loader with configuration settings.

        Args:
            config: Dictionary containing configuration parameters
        """
        self.config = config or {}
        self.csv_delimiter = self.config.get("csv_delimiter", ",")
        self.encoding = self.config.get("csv_encoding", "utf-8")

    def _read(self, source, label: str) -> List[Dict]:
        try:
            df = pd.read_csv(
                source,
                sep=self.csv_delimiter,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
            )
        except pd.errors.EmptyDataError:
            logger.warning(f"No data found in {label}")
            return []
        except pd.errors.ParserError as e:
            logger.error(f"CSV parsing error in {label}: {str(e)}")
            raise ValueError(f"Could not parse tool catalog {label}: {e}") from e

        df.columns = [str(column).strip() for column in df.columns]
        df = df.fillna("")

        # Drop rows where every cell is blank
        if not df.empty:
            blank_rows = df.apply(lambda row: all(not str(v).strip() for v in row), axis=1)
            df = df[~blank_rows]

        missing = [field for field in RECORD_FIELDS if field not in df.columns]
        if missing:
            logger.warning(f"Catalog {label} is missing columns: {', '.join(missing)}")

        records = df.to_dict(orient="records")
        logger.info(f"Loaded {len(records)} tool records from {label}")
        return records

    def load_text(self, csv_text: str) -> List[Dict]:
        """
        Parse CSV text into records.

        Args:
            csv_text: Full CSV document including the header row

        Returns:
            List of record dictionaries
        """
        if not csv_text or not csv_text.strip():
            return []
        return self._read(io.StringIO(csv_text), "CSV content")

    def load_file(self, file_path: str) -> List[Dict]:
        """
        Parse a CSV file into records.

        Args:
            file_path: Path to the CSV file

        Returns:
            List of record dictionaries
        """
        if not os.path.exists(file_path):
            logger.error(f"Tool catalog does not exist: {file_path}")
            raise FileNotFoundError(f"Tool catalog does not exist: {file_path}")

        logger.info(f"Processing file: {file_path}")
        with open(file_path, 'r', encoding=self.encoding) as f:
            return self._read(f, file_path)
