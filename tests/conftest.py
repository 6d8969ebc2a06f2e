from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Keep test runs from writing rotated log files into the working tree.
os.environ.setdefault("LOG_DIR", str(Path(tempfile.gettempdir()) / "briefly-test-logs"))
os.environ.setdefault("CONTENT_CACHE_DIR", str(Path(tempfile.gettempdir()) / "briefly-test-cache"))
