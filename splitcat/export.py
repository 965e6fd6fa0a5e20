"""
export.py - export sinks

A sink receives (filename, json_text) from SplitLedger.export_results().
FileExportSink writes it into a directory; the Streamlit page uses its own
sink that turns the payload into a download button.
"""

import logging
import os

EXPORT_DIR = os.getenv("SPLITCAT_EXPORT_DIR") or os.path.join(os.path.dirname(__file__), "..", "exports")

logger = logging.getLogger(__name__)


class FileExportSink:
    """Write export documents as files under `directory`."""

    def __init__(self, directory: str = None):
        self.directory = os.path.abspath(directory or EXPORT_DIR)
        self.last_path = None

    def __call__(self, filename: str, payload: str):
        os.makedirs(self.directory, exist_ok=True)
        target = os.path.join(self.directory, filename)
        with open(target, "w", encoding="utf-8") as f:
            f.write(payload)
        self.last_path = target
        logger.info("Exported split results to %s", target)
