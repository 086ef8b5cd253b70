"""
Diagnostic sink for failed fetches.

Best-effort persistence of the last raw page state. Failures to write are
reported through the log callback and never propagate.
"""

import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional

DEFAULT_PREFIX = "ai-usage-scout-dashboard"


class DiagnosticSink:
    """Writes raw markup and text of the last probe to disk."""

    def __init__(self, directory: Optional[str] = None, prefix: str = DEFAULT_PREFIX):
        """Initialize the sink.

        Args:
            directory: Output directory (defaults to the system temp dir)
            prefix: File name prefix for the artifacts
        """
        self.directory = Path(directory).expanduser() if directory else Path(tempfile.gettempdir())
        self.prefix = prefix

    def dump(
        self,
        markup: Optional[str],
        text: Optional[str],
        log: Callable[[str], None]
    ) -> List[Path]:
        """Write <prefix>-<unix-ts>.html and .txt artifacts.

        Args:
            markup: Last seen page markup
            text: Last seen visible text (written only when non-empty)
            log: Callback receiving the written paths or write errors

        Returns:
            Paths that were written
        """
        stamp = int(time.time())
        written = []
        artifacts = [("html", markup, "HTML"), ("txt", text, "text")]
        for suffix, content, kind in artifacts:
            if not content:
                continue
            path = self.directory / f"{self.prefix}-{stamp}.{suffix}"
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
            except OSError as e:
                log(f"Failed to dump {kind}: {e}")
                continue
            log(f"Dumped {kind}: {path}")
            written.append(path)
        return written
