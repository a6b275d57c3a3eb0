"""
Test Monitor Application (Without Real Broker)
==============================================

MonitorApp wiring, diagnostic scheduling, shutdown ordering and the CLI
entry point.

Usage:
    pytest test_monitor_app.py
"""

import json
import tempfile
import time
from pathlib import Path

import pytest

from tapline_mqtt import ConnectionState
from tapline_mqtt.engine import Connected, MessageReceived
from tapline_mqtt.schemas import InboundMessage
from tapline_monitor import MonitorApp, MonitorConfig
from tapline_monitor.app import build_handlers

import run_monitor
from test_session_controller import FakeEngine


def make_app(diagnostic_delay=0.0, log_dir=None):
    engines = []

    def factory(identity, options):
        engine = FakeEngine(identity, options)
        engines.append(engine)
        return engine

    config = MonitorConfig.from_dict({
        'mqtt': {
            'broker': "mqtt://localhost:1883",
            'client_id': "tapline_app01",
            'topics': ["sensors/#"],
            'diagnostic_delay': diagnostic_delay,
        },
        'logging': {
            'log_file': str(Path(log_dir) / "monitor.log") if log_dir else None,
            'error_log_file': str(Path(log_dir) / "monitor-errors.log") if log_dir else None,
        },
    })
    app = MonitorApp(config=config, engine_factory=factory, disconnect_timeout=2.0)
    return app, engines


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.01)
    return predicate()


def test_app_setup_start_shutdown():
    app, engines = make_app()
    app.setup()
    app.start()

    engine = engines[0]
    assert engine.identity.client_id == "tapline_app01"
    assert engine.options.last_will is not None

    engine.fire(Connected())
    engine.fire(MessageReceived(InboundMessage(topic="sensors/a", payload=b'{"humidity": 40}')))
    assert wait_for(lambda: app.controller.messages_received == 1)
    assert [s.topic_filter for s in engine.subscribe_calls[0]] == ["sensors/#"]

    assert app.shutdown() is True
    assert app.controller.state is ConnectionState.CLOSED
    assert engine.end_calls == [False]

    # Second shutdown is refused
    assert app.shutdown() is False


def test_app_schedules_diagnostic_publish():
    app, engines = make_app(diagnostic_delay=0.3)
    app.setup()
    app.start()
    engines[0].fire(Connected())

    assert wait_for(lambda: len(engines[0].publishes) == 1)
    topic, payload, qos, retain = engines[0].publishes[0]
    assert topic == "test/tapline-client"
    assert json.loads(payload)['client_id'] == "tapline_app01"

    app.shutdown()


def test_app_requires_setup():
    app, engines = make_app()
    with pytest.raises(RuntimeError):
        app.start()


def test_log_files_are_created():
    with tempfile.TemporaryDirectory() as tmp:
        handlers = build_handlers(Path(tmp) / "logs" / "monitor.log", Path(tmp) / "logs" / "errors.log")
        try:
            assert len(handlers) == 3
            assert handlers[2].level == 40
            assert (Path(tmp) / "logs").is_dir()
        finally:
            for handler in handlers[1:]:
                handler.close()


def test_cli_overrides_and_exit_codes():
    args = run_monitor.parse_args([
        "--broker", "mqtts://broker.example.com",
        "--topic", "a/#",
        "--topic", "b/+",
        "--qos", "0",
        "--no-log-file",
    ])
    config = run_monitor.load_config(args)

    assert config.mqtt.broker == "mqtts://broker.example.com"
    assert config.mqtt.topics == ("a/#", "b/+")
    assert config.mqtt.qos == 0
    assert config.logging.log_file is None

    with pytest.raises(SystemExit) as exc_info:
        run_monitor.main(["--config", "/nonexistent/monitor_config.yaml"])
    assert exc_info.value.code == 1

    with pytest.raises(SystemExit) as exc_info:
        run_monitor.main(["--broker", "http://not-mqtt", "--no-log-file"])
    assert exc_info.value.code == 1
