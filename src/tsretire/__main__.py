"""Main entry point for ``python -m tsretire``.

SIGTERM and SIGQUIT are turned into ``SystemExit`` so an interrupted run
still removes its working directory and closes the confirmation listener.
"""

import signal
import sys

from tsretire.cli import app
from tsretire.core.errors import ExitCode
from tsretire.core.logging import get_logger

logger = get_logger(__name__)


def signal_handler(signum: int, frame) -> None:
    """Interrupt the run with the ``INTERRUPTED`` exit code.

    Args:
        signum: Signal number
        frame: Current stack frame
    """
    signal_name = signal.Signals(signum).name
    logger.warning("signal_received", signal=signal_name)
    sys.exit(int(ExitCode.INTERRUPTED))


def main() -> None:
    """Main entry point with signal handling."""
    signal.signal(signal.SIGTERM, signal_handler)
    if hasattr(signal, "SIGQUIT"):
        signal.signal(signal.SIGQUIT, signal_handler)

    try:
        app()
    except KeyboardInterrupt:
        logger.warning("keyboard_interrupt")
        sys.exit(int(ExitCode.INTERRUPTED))


if __name__ == "__main__":
    main()
