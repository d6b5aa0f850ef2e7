"""
Off-thread execution of the clustering pipeline.

Callers post a message with the CSV content and settings and receive either
``{"tools": [...]}`` or ``{"error": "..."}`` back, never an exception.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Optional, Tuple

from main_pipeline import DEFAULT_SIMILARITY_THRESHOLD, process_csv_content

logger = logging.getLogger(__name__)


def handle_message(message: Dict) -> Dict:
    """
    Process one worker message.

    Args:
        message: Dictionary with ``csvContent`` and optional
            ``similarityThreshold`` and ``featureWeights``

    Returns:
        ``{"tools": entities}`` or ``{"error": message}``
    """
    try:
        tools = process_csv_content(
            message.get("csvContent", ""),
            message.get("similarityThreshold", DEFAULT_SIMILARITY_THRESHOLD),
            message.get("featureWeights"),
        )
        return {"tools": tools}
    except Exception as e:
        return {"error": str(e)}


def handle_process_request(payload: Optional[Dict]) -> Tuple[int, Dict]:
    """
    Validate and answer a processing request.

    Args:
        payload: Decoded request body

    Returns:
        Tuple of (status code, response body)
    """
    payload = payload or {}
    csv_content = payload.get("csvContent")
    if not csv_content:
        return 400, {"error": "csvContent field is required."}

    try:
        tools = process_csv_content(
            csv_content,
            payload.get("similarityThreshold", DEFAULT_SIMILARITY_THRESHOLD),
            payload.get("featureWeights"),
        )
        return 200, {"tools": tools}
    except Exception as e:
        logger.error(f"[process-tools] Error: {str(e)}")
        return 500, {"error": str(e)}


class ProcessingWorker:
    """
    Runs pipeline messages on a background thread pool.
    """
    def __init__(self, max_workers: int = 1):
        """
        Initialize the worker.

        Args:
            max_workers: Number of pipeline runs allowed in parallel
        """
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="tool-clustering")

    @classmethod
    def from_config(cls, config: Dict) -> "ProcessingWorker":
        """Worker sized by the ``worker_threads`` setting."""
        max_workers = int(config.get("worker_threads", 1))
        if max_workers < 1:
            raise ValueError("worker_threads must be at least 1")
        logger.info(f"Starting processing worker with {max_workers} thread(s)")
        return cls(max_workers)

    def submit(self, csv_content: str, similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
               feature_weights: Optional[Dict[str, float]] = None) -> Future:
        """
        Queue a pipeline run.

        Returns:
            Future resolving to a result message
        """
        message = {
            "csvContent": csv_content,
            "similarityThreshold": similarity_threshold,
            "featureWeights": feature_weights,
        }
        return self._executor.submit(handle_message, message)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
