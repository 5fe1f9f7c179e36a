"""Entry point for the offline POS operator console."""

from __future__ import annotations

import logging
from pathlib import Path

from offline_pos.config import LOG_PATH
from offline_pos.console import OperatorConsole
from offline_pos.runtime import PosRuntime


def configure_logging(path: str = LOG_PATH, level: int = logging.INFO) -> None:
    """Log to a file; the console owns the terminal."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=path,
        level=level,
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )


def main() -> None:
    """Start the background queues and run the console until the operator quits."""
    configure_logging()
    runtime = PosRuntime.from_config()
    runtime.start()
    try:
        OperatorConsole(runtime).run()
    except BaseException:
        # Leave the crash snapshot in place for the next start.
        runtime.shutdown(clean=False)
        raise
    runtime.shutdown(clean=True)


if __name__ == "__main__":
    main()
