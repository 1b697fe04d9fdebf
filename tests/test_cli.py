from __future__ import annotations

from pathlib import Path

import pytest

import redline.cli
import redline.turn
from redline.providers.base import ChatProvider, Completed, TextDelta, ToolCallEvent
from redline.tools import ToolCall


class _Provider(ChatProvider):
    name = "anthropic"
    display_name = "Claude"

    def __init__(self, script: list) -> None:
        self.script = script
        self.requests = []

    async def stream(self, request, *, cancel, handle_tool):
        self.requests.append(request)
        for item in self.script:
            if isinstance(item, ToolCall):
                yield ToolCallEvent(item)
                await handle_tool(item)
            elif isinstance(item, BaseException):
                raise item
            else:
                yield item


def _use_provider(monkeypatch, script: list) -> _Provider:
    provider = _Provider(script)
    monkeypatch.setattr(redline.turn, "build_provider", lambda _name: provider)
    return provider


def _project(tmp_path: Path) -> Path:
    (tmp_path / "redline.toml").write_text("version = 1\n", encoding="utf-8")
    (tmp_path / "a.txt").write_text("a\nb\nc\n", encoding="utf-8")
    return tmp_path


def test_chat_completed_prints_text_and_diff(monkeypatch, tmp_path: Path, capsys) -> None:
    root = _project(tmp_path)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    _use_provider(
        monkeypatch,
        [
            TextDelta("Editing a.txt"),
            ToolCall(id="r", name="read_file", input={"path": "a.txt"}),
            ToolCall(id="w", name="write_file", input={"path": "a.txt", "content": "a\nx\nc\n"}),
            Completed(rounds=2),
        ],
    )

    rc = redline.cli.main(["chat", "--root", str(root), "--no-status", "fix it"])
    out = capsys.readouterr().out

    assert rc == 0
    assert out.startswith("Editing a.txt")
    assert "1 file(s) changed:" in out
    assert "── a.txt (modified) ──" in out
    assert "@@ -1,3 +1,3 @@" in out
    assert (root / "a.txt").read_text(encoding="utf-8") == "a\nx\nc\n"


def test_chat_no_diff_flag(monkeypatch, tmp_path: Path, capsys) -> None:
    root = _project(tmp_path)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    _use_provider(
        monkeypatch,
        [
            ToolCall(id="w", name="write_file", input={"path": "new.txt", "content": "n\n"}),
            Completed(rounds=1),
        ],
    )
    rc = redline.cli.main(["chat", "--root", str(root), "--no-diff", "add a file"])
    out = capsys.readouterr().out
    assert rc == 0
    assert "create" in out
    assert "@@" not in out


def test_chat_open_buffer_reaches_system_prompt(monkeypatch, tmp_path: Path) -> None:
    root = _project(tmp_path)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    provider = _use_provider(monkeypatch, [Completed(rounds=1)])
    rc = redline.cli.main(["chat", "--root", str(root), "--open", "a.txt", "hi"])
    assert rc == 0
    assert "# a.txt\na\nb\nc" in provider.requests[0].system_prompt


def test_chat_open_outside_project_is_refused(monkeypatch, tmp_path: Path, capsys) -> None:
    root = tmp_path / "proj"
    root.mkdir()
    _project(root)
    (tmp_path / "secret.txt").write_text("outside\n", encoding="utf-8")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    provider = _use_provider(monkeypatch, [Completed(rounds=1)])

    rc = redline.cli.main(["chat", "--root", str(root), "--open", "../secret.txt", "hi"])
    err = capsys.readouterr().err
    assert rc == 2
    assert "path traversal attempt" in err
    assert provider.requests == []


def test_chat_missing_api_key(monkeypatch, tmp_path: Path, capsys) -> None:
    root = _project(tmp_path)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    _use_provider(monkeypatch, [Completed(rounds=1)])

    rc = redline.cli.main(["chat", "--root", str(root), "hi"])
    err = capsys.readouterr().err
    assert rc == 2
    assert "Claude API key is required to send chat messages." in err
    assert "hint:" in err


def test_chat_reads_key_from_dotenv(monkeypatch, tmp_path: Path) -> None:
    root = _project(tmp_path)
    (root / ".env").write_text("ANTHROPIC_API_KEY=from-dotenv\n", encoding="utf-8")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    provider = _use_provider(monkeypatch, [Completed(rounds=1)])

    assert redline.cli.main(["chat", "--root", str(root), "hi"]) == 0
    assert provider.requests[0].credential == "from-dotenv"


def test_chat_failed_turn(monkeypatch, tmp_path: Path, capsys) -> None:
    root = _project(tmp_path)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    _use_provider(monkeypatch, [RuntimeError("upstream exploded")])

    rc = redline.cli.main(["chat", "--root", str(root), "hi"])
    assert rc == 3
    assert "upstream exploded" in capsys.readouterr().err


def test_chat_invalid_config(tmp_path: Path, capsys) -> None:
    (tmp_path / "redline.toml").write_text("version = 2\n", encoding="utf-8")
    rc = redline.cli.main(["chat", "--root", str(tmp_path), "hi"])
    assert rc == 2
    assert "Unsupported config version" in capsys.readouterr().err


def test_chat_provider_override(monkeypatch, tmp_path: Path) -> None:
    root = _project(tmp_path)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
    seen: list[str] = []

    def fake_build(name: str):
        seen.append(name)
        return _Provider([Completed(rounds=1)])

    monkeypatch.setattr(redline.turn, "build_provider", fake_build)
    rc = redline.cli.main(["chat", "--root", str(root), "--provider", "gpt", "hi"])
    assert rc == 0
    assert seen == ["openai"]


def test_diff_identical(tmp_path: Path, capsys) -> None:
    (tmp_path / "a").write_text("same\n", encoding="utf-8")
    (tmp_path / "b").write_text("same\n", encoding="utf-8")
    rc = redline.cli.main(["diff", str(tmp_path / "a"), str(tmp_path / "b")])
    assert rc == 0
    assert capsys.readouterr().out == ""


def test_diff_changed(tmp_path: Path, capsys) -> None:
    (tmp_path / "a").write_text("a\nb\nc\n", encoding="utf-8")
    (tmp_path / "b").write_text("a\nx\nc\n", encoding="utf-8")
    rc = redline.cli.main(["diff", "--label", "f", str(tmp_path / "a"), str(tmp_path / "b")])
    assert rc == 1
    assert capsys.readouterr().out.splitlines() == [
        "--- a/f",
        "+++ b/f",
        "@@ -1,3 +1,3 @@",
        " a",
        "-b",
        "+x",
        " c",
    ]


def test_diff_missing_before_is_a_creation(tmp_path: Path, capsys) -> None:
    (tmp_path / "b").write_text("new\n", encoding="utf-8")
    rc = redline.cli.main(["diff", "--label", "f", str(tmp_path / "missing"), str(tmp_path / "b")])
    assert rc == 1
    out = capsys.readouterr().out
    assert "--- /dev/null" in out
    assert "@@ -0,0 +1,1 @@" in out


def test_diff_errors(tmp_path: Path, capsys) -> None:
    assert redline.cli.main(["diff", str(tmp_path / "x"), str(tmp_path / "y")]) == 2
    assert redline.cli.main(["diff", "--context", "-1", "a", "b"]) == 2
    capsys.readouterr()


def test_version_and_parse_errors(capsys) -> None:
    assert redline.cli.main(["--version"]) == 0
    assert redline.cli.main([]) == 2
    capsys.readouterr()


@pytest.mark.parametrize("argv", [["chat"], ["diff", "only-one"]])
def test_missing_positional_arguments(argv: list[str], capsys) -> None:
    assert redline.cli.main(argv) == 2
    capsys.readouterr()
