"""
Monitor application: wires configuration, logging and the MQTT session.

Lifecycle:
    1. Setup logging (console + log file + error log file)
    2. Build identity, connection options and subscriptions from config
    3. Create SessionController and connect
    4. Start the event loop (non-blocking) and schedule the diagnostic publish
    5. Wait for stop signal (Ctrl+C or SIGTERM)
    6. Report stats, then disconnect gracefully
"""

import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from tapline_mqtt import SessionController, TopicSubscriber, create_logger
from tapline_mqtt.engine import EngineFactory, PahoEngine

from .config import MonitorConfig

TEXT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


# ─────────────────────────────────────────────────────────────────────────────
# Logging Setup
# ─────────────────────────────────────────────────────────────────────────────

def build_handlers(
    log_file: Optional[Path] = None,
    error_log_file: Optional[Path] = None
) -> List[logging.Handler]:
    """
    Create the log sinks: stdout, optional log file, optional error-only file.

    Log directories are created if needed.
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    if error_log_file:
        error_log_file.parent.mkdir(parents=True, exist_ok=True)
        error_handler = logging.FileHandler(error_log_file)
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    return handlers


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    error_log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Setup logging for the monitor application.

    Application messages use a plain text format; the session's structured
    loggers get their own handlers (see build_handlers) so both formats can
    share the same destinations.

    Returns:
        Logger instance for the monitor
    """
    logging.basicConfig(
        level=level,
        format=TEXT_LOG_FORMAT,
        handlers=build_handlers(log_file, error_log_file),
        force=True
    )

    logger = logging.getLogger(__name__)
    return logger


# ─────────────────────────────────────────────────────────────────────────────
# Main Application
# ─────────────────────────────────────────────────────────────────────────────

class MonitorApp:
    """
    Main application wrapper for SessionController.

    Handles:
    - Component initialization (identity, options, subscriber, session)
    - Scheduled diagnostic publish
    - Signal handling (SIGTERM, SIGINT)
    - Graceful shutdown (stats reported before the connection closes)
    """

    def __init__(
        self,
        config: MonitorConfig,
        engine_factory: EngineFactory = PahoEngine,
        disconnect_timeout: float = 5.0
    ):
        self.config = config
        self.engine_factory = engine_factory
        self.disconnect_timeout = disconnect_timeout
        self.logger = setup_logging(
            level=config.logging.level_value,
            log_file=config.logging.log_file,
            error_log_file=config.logging.error_log_file
        )

        # Components (initialized in setup())
        self.controller: Optional[SessionController] = None
        self._diagnostic_timer: Optional[threading.Timer] = None

        # Signal handling
        self._shutdown_requested = False

    def setup(self):
        """
        Setup all components.

        Raises:
            ConfigurationError: If the connection cannot be configured
        """
        self.logger.info("=" * 80)
        self.logger.info("🚀 Tapline MQTT Monitor - Starting")
        self.logger.info("=" * 80)

        identity = self.config.build_identity()
        options = self.config.build_options(identity)
        self.logger.info(f"🔌 Broker: {options.broker} (client_id={identity.client_id})")

        session_logger = create_logger(
            component="session",
            level=self.config.logging.level_value,
            handlers=build_handlers(
                self.config.logging.log_file, self.config.logging.error_log_file
            )
        )

        subscriber = TopicSubscriber(
            subscriptions=self.config.build_subscriptions(),
            logger=session_logger
        )
        self.logger.info(f"📥 Topic filters: {', '.join(subscriber.topic_filters)}")

        self.controller = SessionController(
            identity=identity,
            options=options,
            subscriber=subscriber,
            logger=session_logger,
            engine_factory=self.engine_factory,
            publish_qos=self.config.mqtt.qos,
            diagnostic_topic=self.config.mqtt.diagnostic_topic,
            recognized_fields=self.config.recognized_fields
        )
        self.logger.info("✅ Session created")
        self.logger.info("=" * 80)

    def start(self):
        """Connect, start the event loop and schedule the diagnostic publish."""
        if not self.controller:
            raise RuntimeError("Session not initialized. Call setup() first.")

        self.controller.connect()
        self.controller.start()

        delay = self.config.mqtt.diagnostic_delay
        if delay > 0:
            self._diagnostic_timer = threading.Timer(delay, self.controller.publish_diagnostic)
            self._diagnostic_timer.daemon = True
            self._diagnostic_timer.start()

    def run(self):
        """
        Run the monitor.

        Blocks until shutdown is requested (via signal or exception).
        """
        if not self.controller:
            raise RuntimeError("Session not initialized. Call setup() first.")

        # Setup signal handlers
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            self.start()

            self.logger.info("✅ Monitor started, waiting for messages")
            self.logger.info("Press Ctrl+C to stop")

            # Block until the session closes
            self.controller.wait()

        except KeyboardInterrupt:
            self.logger.info("⚠️  KeyboardInterrupt received")
            self.shutdown()

    def shutdown(self) -> bool:
        """
        Graceful shutdown.

        Order:
        1. Cancel the pending diagnostic publish
        2. Report stats
        3. Disconnect the session (waits for close acknowledgement)

        Returns:
            True if the session closed cleanly
        """
        if self._shutdown_requested:
            self.logger.warning("⚠️  Shutdown already in progress")
            return False

        self._shutdown_requested = True

        self.logger.info("=" * 80)
        self.logger.info("🛑 Shutting down monitor")
        self.logger.info("=" * 80)

        if self._diagnostic_timer:
            self._diagnostic_timer.cancel()

        if not self.controller:
            return True

        stats = self.controller.get_stats()
        self.logger.info(
            f"📊 Stats: {stats['messages_received']} messages received "
            f"(client_id={stats['client_id']}, state={stats['state']})"
        )

        closed = self.controller.disconnect(timeout=self.disconnect_timeout)
        if closed:
            self.logger.info("✅ Connection closed")
        else:
            self.logger.warning("⚠️  Close not acknowledged, connection torn down")

        self.logger.info("✅ Shutdown complete")
        return closed

    def _signal_handler(self, signum, frame):
        """
        Handle shutdown signals (SIGTERM, SIGINT).

        Args:
            signum: Signal number
            frame: Current stack frame (unused)
        """
        signal_name = signal.Signals(signum).name
        self.logger.info(f"⚠️  Received signal {signal_name} ({signum})")
        self.shutdown()
        sys.exit(0)
