"""End-to-end tests for ServerListReporter against a loopback receiver."""

import threading
import time

import pytest

from conftest import FakeReceiver, closed_port, make_host_info, make_settings, wait_until
from dmp_reporter import binary_serializer
from dmp_reporter.host import ConsoleCommands, StaticHost
from dmp_reporter.reporter import RELOAD_COMMAND, ServerListReporter
from dmp_reporter.types import SessionState


@pytest.fixture
def make_reporter():
    reporters = []

    def factory(host, loader):
        reporter = ServerListReporter(host, loader)
        reporters.append(reporter)
        return reporter

    yield factory

    for reporter in reporters:
        reporter.stop(timeout=3.0)


def player_lists(receiver, session=-1):
    return [report["players"] for report in receiver.reports(session)]


class TestReporting:
    def test_join_and_leave_send_full_reports(self, receiver, static_host, make_reporter):
        reporter = make_reporter(static_host, lambda: make_settings([receiver.endpoint]))
        reporter.start()
        assert wait_until(lambda: len(receiver.reports(0)) == 1)

        reporter.on_player_joined("Alice")
        reporter.on_player_joined("Bob")
        reporter.on_player_left("Alice")

        assert wait_until(lambda: len(receiver.reports(0)) == 4)
        assert player_lists(receiver, 0) == [[], ["Alice"], ["Alice", "Bob"], ["Bob"]]
        assert reporter.players == ["Bob"]

    def test_report_contents(self, receiver, static_host, make_reporter):
        reporter = make_reporter(
            static_host,
            lambda: make_settings(
                [receiver.endpoint], description="Career, no mods", admin="Jeb", fixed_ip=True
            ),
        )
        reporter.start()
        assert wait_until(lambda: receiver.reports(0))

        report = receiver.reports(0)[0]
        assert report["serverName"] == "Test Server"
        assert report["description"] == "Career, no mods"
        assert report["admin"] == "Jeb"
        assert report["fixedIP"] is True
        assert report["gameMode"] == 2
        assert report["universeSize"] == 4096
        assert len(report["serverHash"]) == 64

    def test_leaving_unknown_player_still_reports(self, receiver, static_host, make_reporter):
        reporter = make_reporter(static_host, lambda: make_settings([receiver.endpoint]))
        reporter.start()
        assert wait_until(lambda: len(receiver.reports(0)) == 1)

        reporter.on_player_left("Nobody")

        assert wait_until(lambda: len(receiver.reports(0)) == 2)
        assert player_lists(receiver, 0) == [[], []]

    def test_events_before_connect_are_superseded(self, receiver, static_host, make_reporter):
        """Reports queued while offline are dropped; the connect report carries current state."""
        reporter = make_reporter(static_host, lambda: make_settings([receiver.endpoint]))

        reporter.on_player_joined("Alice")
        reporter.on_player_joined("Bob")
        assert len(reporter.outbound_queue) == 2

        reporter.start()
        assert wait_until(lambda: receiver.reports(0))
        time.sleep(0.1)
        assert player_lists(receiver, 0) == [["Alice", "Bob"]]

    def test_report_returns_false_on_encoding_error(self, make_reporter):
        host = StaticHost(make_host_info(server_name=None))
        reporter = make_reporter(host, lambda: make_settings(["127.0.0.1:9"]))

        assert reporter.report() is False
        assert len(reporter.outbound_queue) == 0

    def test_report_returns_false_when_too_large(self, static_host, make_reporter, caplog):
        description = "x" * (binary_serializer.MAX_PAYLOAD_SIZE + 1)
        reporter = make_reporter(
            static_host, lambda: make_settings(["127.0.0.1:9"], description=description)
        )

        with caplog.at_level("ERROR"):
            assert reporter.report() is False
        assert len(reporter.outbound_queue) == 0
        assert "encoding failed" in caplog.text

    def test_report_returns_false_when_host_fails(self, make_reporter):
        class BrokenHost:
            def get_host_info(self):
                raise RuntimeError("server not ready")

        reporter = make_reporter(BrokenHost(), lambda: make_settings(["127.0.0.1:9"]))

        assert reporter.report() is False
        reporter.on_player_joined("Alice")
        assert reporter.players == ["Alice"]
        assert len(reporter.outbound_queue) == 0

    def test_no_heartbeat_while_reports_flow(self, receiver, static_host, make_reporter):
        reporter = make_reporter(static_host, lambda: make_settings([receiver.endpoint]))
        reporter.start()
        assert wait_until(lambda: receiver.reports(0))
        time.sleep(0.2)
        types = [message_type for message_type, _ in receiver.frames(0)]
        assert binary_serializer.HEARTBEAT_ID not in types


class TestLifecycle:
    def test_stop_closes_connection(self, receiver, static_host, make_reporter):
        reporter = make_reporter(static_host, lambda: make_settings([receiver.endpoint]))
        reporter.on_server_start()
        assert wait_until(lambda: reporter.state == SessionState.ACTIVE)
        assert reporter.is_running

        reporter.on_server_stop()

        assert reporter.state == SessionState.STOPPED
        assert not reporter.is_running
        assert wait_until(lambda: receiver.eof_seen[0])

    def test_stop_without_start(self, static_host, make_reporter):
        reporter = make_reporter(static_host, lambda: make_settings(["127.0.0.1:9"]))
        reporter.stop()
        assert reporter.state == SessionState.STOPPED

    def test_start_twice_keeps_one_worker(self, receiver, static_host, make_reporter):
        reporter = make_reporter(static_host, lambda: make_settings([receiver.endpoint]))
        reporter.start()
        worker = reporter._thread
        reporter.start()

        assert reporter._thread is worker
        assert wait_until(lambda: receiver.reports(0))
        time.sleep(0.2)
        assert receiver.session_count() == 1

    def test_reconnects_after_transport_error(self, receiver, static_host, make_reporter):
        reporter = make_reporter(static_host, lambda: make_settings([receiver.endpoint]))
        reporter.start()
        assert wait_until(lambda: len(receiver.reports(0)) == 1)
        reporter.on_player_joined("Alice")
        assert wait_until(lambda: len(receiver.reports(0)) == 2)

        receiver.drop_clients()

        assert wait_until(lambda: receiver.session_count() == 2)
        assert wait_until(lambda: receiver.reports(1))
        assert player_lists(receiver, 1)[0] == ["Alice"]

    def test_all_receivers_down(self, static_host, make_reporter, caplog):
        settings = make_settings([f"127.0.0.1:{closed_port()}"], outage_retry_delay=60.0)
        reporter = make_reporter(static_host, lambda: settings)

        with caplog.at_level("WARNING"):
            reporter.start()
            assert wait_until(lambda: "All reporters are down" in caplog.text)

        assert "trying again in 60 seconds" in caplog.text
        assert reporter.state == SessionState.CONNECTING

        started = time.monotonic()
        reporter.stop()
        # Cooldown wait is interruptible
        assert time.monotonic() - started < 2.0
        assert not reporter.is_running

    def test_connection_events(self, receiver, static_host, make_reporter):
        connected = []
        disconnected = []
        reporter = make_reporter(static_host, lambda: make_settings([receiver.endpoint]))
        reporter.on_connected.add_listener(lambda endpoint, address: connected.append(endpoint))
        reporter.on_disconnected.add_listener(
            lambda endpoint, reason: disconnected.append((endpoint, reason))
        )

        reporter.start()
        assert wait_until(lambda: connected)
        receiver.drop_clients()
        assert wait_until(lambda: disconnected)
        assert disconnected[0] == (receiver.endpoint, "transport_error")
        assert wait_until(lambda: len(connected) == 2)

        reporter.stop()
        assert wait_until(lambda: len(disconnected) == 2)
        assert disconnected[1] == (receiver.endpoint, "stopped")


class TestReload:
    def test_register_reload_command(self, static_host, make_reporter):
        reporter = make_reporter(static_host, lambda: make_settings(["127.0.0.1:9"]))
        commands = ConsoleCommands()
        reporter.register_commands(commands)
        assert RELOAD_COMMAND == "reloadreporter"
        assert RELOAD_COMMAND in commands.commands

    def test_reload_switches_receiver(self, receiver, static_host, make_reporter):
        second = FakeReceiver()
        loads = [make_settings([receiver.endpoint]), make_settings([second.endpoint])]
        calls = []

        def loader():
            calls.append(len(calls))
            return loads[len(calls) - 1]

        reporter = make_reporter(static_host, loader)
        try:
            commands = ConsoleCommands()
            reporter.register_commands(commands)
            reporter.start()
            assert wait_until(lambda: receiver.reports(0))

            assert commands.dispatch(RELOAD_COMMAND)

            assert reporter.settings is loads[1]
            assert reporter.state in (SessionState.CONNECTING, SessionState.ACTIVE)
            assert wait_until(lambda: receiver.eof_seen[0])
            assert wait_until(lambda: second.reports(0))
        finally:
            reporter.stop(timeout=3.0)
            second.close()

    def test_reload_notifies_listeners(self, static_host, make_reporter):
        loads = iter(
            [make_settings(["127.0.0.1:9"]), make_settings(["127.0.0.1:9"], admin="Val")]
        )
        reporter = make_reporter(static_host, lambda: next(loads))
        reloaded = []
        reporter.on_reloaded.add_listener(reloaded.append)

        reporter.reload()

        assert reloaded == [reporter.settings]
        assert reloaded[0].config.admin == "Val"

    def test_failed_reload_does_not_notify(self, static_host, make_reporter):
        calls = []

        def loader():
            calls.append(1)
            if len(calls) > 1:
                raise ValueError("broken settings file")
            return make_settings(["127.0.0.1:9"])

        reporter = make_reporter(static_host, loader)
        reloaded = []
        reporter.on_reloaded.add_listener(reloaded.append)

        reporter.reload()

        assert reloaded == []

    def test_reload_failure_keeps_previous_settings(self, receiver, static_host, make_reporter):
        original = make_settings([receiver.endpoint])
        calls = []

        def loader():
            calls.append(1)
            if len(calls) > 1:
                raise ValueError("broken settings file")
            return original

        reporter = make_reporter(static_host, loader)
        reporter.start()
        assert wait_until(lambda: receiver.reports(0))

        reporter.reload()

        assert reporter.settings is original
        assert reporter.is_running
        assert wait_until(lambda: receiver.session_count() == 2)

    def test_concurrent_reloads_leave_one_worker(self, receiver, static_host, make_reporter):
        reporter = make_reporter(static_host, lambda: make_settings([receiver.endpoint]))
        reporter.start()
        assert wait_until(lambda: receiver.reports(0))

        threads = [threading.Thread(target=reporter.reload) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)

        assert reporter.is_running
        assert wait_until(lambda: reporter.state == SessionState.ACTIVE)
