"""Utilities for handling KeyboardInterrupt outside the main thread.

The cascade watcher and run worker are background threads. A
KeyboardInterrupt raised there would only end that thread, so it is forwarded
to the main thread, which owns shutdown.
"""

import _thread


def handle_keyboard_interrupt_properly(ke: KeyboardInterrupt) -> None:
    """Forward a KeyboardInterrupt to the main thread and re-raise it.

    Usage:
        try:
            runner.execute()
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)

    Args:
        ke: The KeyboardInterrupt exception to handle

    Raises:
        KeyboardInterrupt: Always re-raises the exception after handling
    """
    _thread.interrupt_main()
    raise ke
