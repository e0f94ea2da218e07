"""
Background clipboard revoker.

Spawned by DetachedScheduler so the clipboard is cleared after the CLI has
exited: sleeps for the TTL, then clears the clipboard unless a newer exposure
has been recorded in the shared state file.
"""

import sys
import time
import logging
import argparse
from typing import List, Optional

from . import config
from .clipboard import get_clipboard
from .exceptions import TornjakError
from .exposure import ExposureManager, FileGenerationCounter

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None, sleep=time.sleep) -> int:
    parser = argparse.ArgumentParser(prog=f"{config.APP_NAME}-revoke")
    parser.add_argument("--state", required=True, help="exposure generation file")
    parser.add_argument("--generation", type=int, required=True)
    parser.add_argument("--delay", type=float, default=config.CLIPBOARD_CLEAR_TIMEOUT_DEFAULT_SECONDS)
    parser.add_argument("--clipboard", choices=config.CLIPBOARD_BACKENDS, default="command")
    args = parser.parse_args(argv)

    sleep(args.delay)
    try:
        manager = ExposureManager(get_clipboard(args.clipboard), counter=FileGenerationCounter(args.state))
        manager.revoke(args.generation)
    except TornjakError as e:
        logger.error(f"Clipboard revocation failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format=config.LOG_FORMAT)
    sys.exit(main())
