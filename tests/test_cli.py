import json

from typer.testing import CliRunner

from conftest import requires_posix
from uvaclient.cli import app
from uvaclient.errors import SPAWN_FAILURE_MESSAGE

runner = CliRunner()


def test_app_has_analyze_command():
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    assert "analyze" in result.stdout


def test_app_has_definition_and_tokens_commands():
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    assert "definition" in result.stdout
    assert "tokens" in result.stdout


def test_app_has_mcp_server_command():
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    assert "mcp-server" in result.stdout


def test_version_option():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert "uvac version" in result.stdout


def test_definition_requires_name_or_offset(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source = tmp_path / "main.uva"
    source.write_text("fn foo() {}\n")

    result = runner.invoke(app, ["definition", str(source)])

    assert result.exit_code == 1
    assert "--offset" in result.output


def test_definition_offset_outside_any_symbol(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source = tmp_path / "main.uva"
    source.write_text("fn foo() {}\n")

    result = runner.invoke(app, ["definition", str(source), "--offset", "9"])

    assert result.exit_code == 1
    assert "No symbol at offset 9" in result.output


def test_unsupported_language_exits_with_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source = tmp_path / "script.py"
    source.write_text("print('hi')\n")

    result = runner.invoke(app, ["analyze", str(source), "--language", "python"])

    assert result.exit_code == 1
    assert "Unsupported language 'python'" in result.output


def test_missing_file_exits_with_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["analyze", str(tmp_path / "missing.uva")])

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_spawn_failure_exits_with_message(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".uvaclient").write_text(
        "analyzer:\n  development: true\n  development_path: build/nothing-here\n"
    )
    source = tmp_path / "main.uva"
    source.write_text("fn foo() {}\n")

    result = runner.invoke(app, ["analyze", str(source)])

    assert result.exit_code == 1
    assert SPAWN_FAILURE_MESSAGE in result.output


@requires_posix
def test_analyze_prints_projection(analyzer_project, monkeypatch):
    monkeypatch.chdir(analyzer_project)
    source = analyzer_project / "cli_analyze.uva"
    source.write_text("fn foo() { bar() }\n// TODO\n")

    result = runner.invoke(app, ["analyze", str(source)])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["decorations"]["function"] == [[3, 6], [11, 14]]
    assert data["decorations"]["class"] == []
    diagnostics = data["diagnostics"][str(source.resolve())]
    assert len(diagnostics) == 1
    assert diagnostics[0]["severity"] == "warning"
    assert diagnostics[0]["range"]["start"] == {"line": 1, "column": 3}


@requires_posix
def test_definition_prints_location(analyzer_project, monkeypatch):
    monkeypatch.chdir(analyzer_project)
    source = analyzer_project / "cli_definition.uva"
    source.write_text("fn first() {}\nfn second() { first() }\n")

    result = runner.invoke(app, ["definition", str(source), "second"])

    assert result.exit_code == 0
    location = json.loads(result.stdout)
    assert location["file"] == str(source.resolve())
    assert location["line"] == 1
    assert location["column"] == 3
    assert location["range"] == {
        "start": {"line": 1, "column": 3},
        "end": {"line": 1, "column": 9},
    }


@requires_posix
def test_definition_by_offset_uses_symbol_under_cursor(analyzer_project, monkeypatch):
    monkeypatch.chdir(analyzer_project)
    source = analyzer_project / "cli_definition_offset.uva"
    text = "fn first() {}\nfn second() { first() }\n"
    source.write_text(text)
    use = text.index("first()", 14) + 2

    result = runner.invoke(app, ["definition", str(source), "--offset", str(use)])

    assert result.exit_code == 0
    location = json.loads(result.stdout)
    assert location["line"] == 0
    assert location["offset"] == 3
    assert location["range"]["end"] == {"line": 0, "column": 8}


@requires_posix
def test_definition_not_found(analyzer_project, monkeypatch):
    monkeypatch.chdir(analyzer_project)
    source = analyzer_project / "cli_missing.uva"
    source.write_text("fn first() {}\n")

    result = runner.invoke(app, ["definition", str(source), "nowhere"])

    assert result.exit_code == 1
    assert "Declaration 'nowhere' not found" in result.output


@requires_posix
def test_crash_exits_with_error(analyzer_project, monkeypatch):
    monkeypatch.chdir(analyzer_project)
    source = analyzer_project / "cli_crash.uva"
    source.write_text("#crash\n")

    result = runner.invoke(app, ["analyze", str(source)])

    assert result.exit_code == 1
    assert "Exited with code 3" in result.output


@requires_posix
def test_tokens_prints_token_ranges(analyzer_project, monkeypatch):
    monkeypatch.chdir(analyzer_project)
    source = analyzer_project / "cli_tokens.uva"
    source.write_text("fn foo() {}\n")

    result = runner.invoke(app, ["tokens", str(source)])

    assert result.exit_code == 0
    tokens = json.loads(result.stdout)
    assert [t["kind"] for t in tokens] == ["keyword", "identifier"]
    assert tokens[1]["range"] == {
        "start": {"line": 0, "column": 3},
        "end": {"line": 0, "column": 6},
    }
