from __future__ import annotations
import os

DEFAULT_EVENT = os.environ.get("MATRIXCI_EVENT", "push")
DEFAULT_WORKERS = int(os.environ["MATRIXCI_WORKERS"]) if os.environ.get("MATRIXCI_WORKERS") else None
STEP_TIMEOUT = float(os.environ["MATRIXCI_STEP_TIMEOUT"]) if os.environ.get("MATRIXCI_STEP_TIMEOUT") else None
OUTPUT_TAIL = int(os.environ.get("MATRIXCI_OUTPUT_TAIL", "4000"))
OUTPUT_FILE_ENV = "MATRIXCI_OUTPUT"
