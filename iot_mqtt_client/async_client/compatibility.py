"""
Asyncio event loop compatibility for Windows.

Both transports need ``loop.add_reader``: aiomqtt drives paho's socket from the
event loop, and the paho transport hands events back to it. Windows (Python
3.8+) defaults to the Proactor loop, which has no ``add_reader``, so connects
fail with errors like "'ProactorEventLoop' has no attribute 'add_reader'".

Environment Variables:
    - ASYNCIO_COMPATIBILITY_MODE=True: switch to WindowsSelectorEventLoopPolicy
      in configure_asyncio_compatibility()
    - SUPPRESS_ASYNCIO_WARNINGS=True: silence the warning emitted by
      ensure_compatible_event_loop_policy()

See Also:
    - https://github.com/eclipse/paho.mqtt.python/issues/558
"""
import asyncio
import logging
import os
import sys
import warnings

logger = logging.getLogger(__name__)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "False").lower() == "true"


def _selector_policy_cls():
    if not sys.platform.startswith("win"):
        return None
    return getattr(asyncio, "WindowsSelectorEventLoopPolicy", None)


def ensure_compatible_event_loop_policy() -> None:
    """
    Warn if the current event loop policy cannot run the MQTT transports.

    Only inspects the policy; it never changes it. Does nothing off Windows.
    """
    selector_cls = _selector_policy_cls()
    if selector_cls is None:
        logger.debug("No event loop compatibility issues expected on this platform.")
        return

    if isinstance(asyncio.get_event_loop_policy(), selector_cls):
        return

    if not _env_flag("SUPPRESS_ASYNCIO_WARNINGS"):
        warnings.warn(
            "Detected Windows using WindowsProactorEventLoopPolicy. The MQTT transports "
            "need add_reader support. Set ASYNCIO_COMPATIBILITY_MODE=True and call "
            "configure_asyncio_compatibility() before asyncio.run(), or set "
            "SUPPRESS_ASYNCIO_WARNINGS=True to silence this warning.",
            RuntimeWarning,
            stacklevel=2,
        )


def configure_asyncio_compatibility() -> bool:
    """
    Switch to the selector event loop on Windows when ASYNCIO_COMPATIBILITY_MODE=True.

    Must run before any event loop is started.

    Returns:
        True if the policy was changed
    """
    selector_cls = _selector_policy_cls()
    if selector_cls is None:
        logger.debug(f"Running on {sys.platform}; no event loop policy change needed.")
        return False

    if not _env_flag("ASYNCIO_COMPATIBILITY_MODE"):
        logger.info(
            "ASYNCIO_COMPATIBILITY_MODE is not enabled; keeping the default event loop policy."
        )
        return False

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        asyncio.set_event_loop_policy(selector_cls())
        logger.info("Set event loop policy to WindowsSelectorEventLoopPolicy.")
        return True

    logger.warning(
        "Cannot change the event loop policy while a loop is running; call "
        "configure_asyncio_compatibility() before asyncio.run()."
    )
    return False


def reset_event_loop_policy() -> None:
    """Restore the interpreter's default event loop policy on Windows."""
    if _selector_policy_cls() is None:
        return
    asyncio.set_event_loop_policy(None)
    logger.debug("Reset event loop policy to the platform default.")
