"""Tests for the AnalyzerClient facade."""

from unittest.mock import Mock

import pytest

from conftest import fake_oneshot_command, fake_server_command, wait_for
from uvaclient.client import AnalyzerClient, handoff_path, write_handoff_file
from uvaclient.config import ClientConfig
from uvaclient.errors import ProcessCrash, ProtocolError, SpawnFailure
from uvaclient.models import AnalysisResult, Location
from uvaclient.oneshot import OneShotRunner
from uvaclient.supervisor import ProcessSupervisor


def _location(file, offset):
    return {"file": file, "line": 0, "column": offset, "offset": offset}


@pytest.fixture
def supervisor():
    return Mock(spec=ProcessSupervisor)


@pytest.fixture
def oneshot():
    return Mock(spec=OneShotRunner)


@pytest.fixture
def client(supervisor, oneshot):
    return AnalyzerClient(ClientConfig(), supervisor=supervisor, oneshot=oneshot)


def test_handoff_path_uses_base_name(tmp_path):
    path = handoff_path(str(tmp_path / "nested" / "main.uva"))
    assert path.name == "main.uva"
    assert path.parent != tmp_path / "nested"


def test_write_handoff_file(tmp_path):
    document_path = str(tmp_path / "handoff_roundtrip.uva")

    path = write_handoff_file("fn foo() {}", document_path)

    assert path.read_text(encoding="utf-8") == "fn foo() {}"


def test_other_language_skips_the_supervisor(client, supervisor, oneshot):
    result = client.analyze("print('hi')", "/src/script.py", "python")

    assert result == AnalysisResult.empty()
    assert supervisor.method_calls == []
    assert oneshot.method_calls == []


def test_analyze_sends_request_and_decodes(client, supervisor):
    document_path = "/src/client_decodes.uva"
    supervisor.request.return_value = {
        "elapsed": 2,
        "declarations": [{"name": "foo", "kind": "function", "location": _location(document_path, 3)}],
        "linter": [],
    }

    result = client.analyze("fn foo() {}", document_path, "uva")

    handoff = handoff_path(document_path)
    supervisor.request.assert_called_once_with(
        f"{document_path}\n{handoff}\n".encode("utf-8")
    )
    assert handoff.read_text(encoding="utf-8") == "fn foo() {}"
    assert [d.name for d in result.declarations] == ["foo"]
    assert result.elapsed == 2


def test_supervisor_failure_returns_empty_result(client, supervisor):
    supervisor.request.side_effect = ProtocolError("stdin is not writable")

    result = client.analyze("fn foo() {}", "/src/client_fail.uva", "uva")

    assert result == AnalysisResult.empty()
    # The supervisor reports its own failures
    supervisor.report.assert_not_called()


def test_unusable_payload_is_reported(client, supervisor):
    supervisor.request.return_value = ["not", "an", "object"]

    result = client.analyze("fn foo() {}", "/src/client_list.uva", "uva")

    assert result == AnalysisResult.empty()
    supervisor.report.assert_called_once()
    assert isinstance(supervisor.report.call_args.args[0], ProtocolError)


def test_analyze_never_raises_on_handoff_failure(client, supervisor, monkeypatch):
    def fail(*args, **kwargs):
        raise PermissionError("read-only tmp")

    monkeypatch.setattr("uvaclient.client.write_handoff_file", fail)

    result = client.analyze("fn foo() {}", "/src/client_ro.uva", "uva")

    assert result == AnalysisResult.empty()
    supervisor.request.assert_not_called()
    supervisor.report.assert_called_once()


def test_oneshot_invocation_bypasses_the_server(supervisor, oneshot):
    client = AnalyzerClient(
        ClientConfig(invocation="oneshot"), supervisor=supervisor, oneshot=oneshot
    )
    oneshot.run.return_value = AnalysisResult.empty()

    assert client.start() is True
    client.analyze("fn foo() {}", "/src/a.uva", "uva")

    oneshot.run.assert_called_once_with("fn foo() {}", "/src/a.uva")
    supervisor.launch.assert_not_called()
    supervisor.request.assert_not_called()


def test_start_reports_spawn_failure(client, supervisor):
    supervisor.launch.return_value = False
    assert client.start() is False


def test_tokens_uses_oneshot(client, oneshot, supervisor):
    oneshot.run.return_value = AnalysisResult.empty()

    client.tokens("fn foo() {}", "/src/a.uva", "uva")

    oneshot.run.assert_called_once_with("fn foo() {}", "/src/a.uva")
    supervisor.request.assert_not_called()


def test_tokens_failure_is_reported(client, oneshot, supervisor):
    oneshot.run.side_effect = SpawnFailure("no binary")

    result = client.tokens("fn foo() {}", "/src/a.uva", "uva")

    assert result == AnalysisResult.empty()
    supervisor.report.assert_called_once_with(oneshot.run.side_effect)


def test_tokens_other_language(client, oneshot):
    assert client.tokens("x", "/src/a.txt", "plaintext") == AnalysisResult.empty()
    oneshot.run.assert_not_called()


def test_definition_returns_declaration_location(client, supervisor):
    document_path = "/src/client_definition.uva"
    supervisor.request.return_value = {
        "declarations": [
            {"name": "print", "location": None},
            {"name": "foo", "kind": "function", "location": _location("/src/lib.uva", 7)},
        ],
    }

    location = client.definition("foo()", document_path, "uva", "foo")

    assert location == Location(file="/src/lib.uva", line=0, column=7, offset=7)
    assert client.definition("foo()", document_path, "uva", "print") is None
    assert client.definition("foo()", document_path, "uva", "missing") is None


def test_on_error_subscribes_to_supervisor(client, supervisor):
    listener = Mock()
    client.on_error(listener)
    supervisor.add_error_listener.assert_called_once_with(listener)


class TestAgainstFakeAnalyzer:
    """The facade wired to real processes."""

    @pytest.fixture
    def live_client(self):
        config = ClientConfig(restart_backoff=0.1, request_timeout=5.0)
        client = AnalyzerClient(
            config,
            supervisor=ProcessSupervisor(
                fake_server_command(),
                restart_backoff=config.restart_backoff,
                request_timeout=config.request_timeout,
            ),
            oneshot=OneShotRunner(fake_oneshot_command),
        )
        yield client
        client.close()

    def test_crash_then_recovery(self, live_client, tmp_path):
        errors = []
        live_client.on_error(errors.append)
        assert live_client.start()
        document_path = str(tmp_path / "live_crash.uva")
        first_pid = live_client.supervisor.pid

        assert live_client.analyze("#crash", document_path, "uva") == AnalysisResult.empty()

        assert wait_for(
            lambda: live_client.supervisor.running and live_client.supervisor.pid != first_pid
        )
        assert len(errors) == 1
        assert isinstance(errors[0], ProcessCrash)

        result = live_client.analyze("fn foo() { bar() }", document_path, "uva")
        assert [d.name for d in result.declarations] == ["foo"]
        assert [r.name for r in result.references] == ["bar"]
        assert len(errors) == 1

    def test_lint_results(self, live_client, tmp_path):
        assert live_client.start()
        document_path = str(tmp_path / "live_lint.uva")

        result = live_client.analyze("TODO\nFIXME", document_path, "uva")

        assert [w.location.length for w in result.warnings] == [4]
        assert [e.location.line for e in result.errors] == [1]

    def test_tokens(self, live_client, tmp_path):
        result = live_client.tokens("fn foo() {}", str(tmp_path / "t.uva"), "uva")
        assert [t.kind for t in result.tokens] == ["keyword", "identifier"]
