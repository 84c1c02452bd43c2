import json
from pathlib import Path

import httpx
import pytest

from rulefy import chunking, cli, generate
from rulefy.providers import LocalProvider, ProviderRegistry

DIGEST = """# Project: demo

## Directory Structure
demo/
├── src/
│   └── app.py
└── tests/
    └── test_app.py

## Files

### src/app.py
```
def greet(name: str) -> str:
    return f"hello {name}"
```

### tests/test_app.py
```
from app import greet


def test_greet():
    assert greet("x") == "hello x"
```
"""


class LocalServer:
    """OpenAI-compatible chat endpoint answering with numbered drafts."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        draft = f"<{self.tag}>\ndraft {len(self.requests)}\n</{self.tag}>"
        return httpx.Response(
            200,
            json={
                "model": body["model"],
                "choices": [{"message": {"role": "assistant", "content": draft}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            },
        )


@pytest.fixture
def digest_file(tmp_path: Path) -> Path:
    path = tmp_path / "repomix-output.txt"
    path.write_text(DIGEST, encoding="utf-8")
    return path


def install_server(monkeypatch: pytest.MonkeyPatch, server: LocalServer, encoding: object) -> None:
    monkeypatch.setattr(chunking, "get_encoding", lambda *_args: encoding)
    transport = httpx.MockTransport(server)
    monkeypatch.setattr(
        generate,
        "ProviderRegistry",
        lambda sleep: ProviderRegistry(providers=[LocalProvider(sleep=sleep, transport=transport)]),
    )


def test_end_to_end_single_chunk_cursor_rules(
    tmp_path: Path,
    digest_file: Path,
    monkeypatch: pytest.MonkeyPatch,
    char_encoding,
) -> None:
    server = LocalServer("cursorrules")
    install_server(monkeypatch, server, char_encoding)
    output_dir = tmp_path / "out"

    exit_code = cli.main(
        [
            "demo",
            "--provider",
            "local",
            "--repomix-file",
            str(digest_file),
            "--output-dir",
            str(output_dir),
            "--description",
            "testing",
            "--yes",
        ],
    )

    assert exit_code == 0
    assert (output_dir / "demo.rules.mdc").read_text(encoding="utf-8") == "draft 1"
    assert len(server.requests) == 1
    request = server.requests[0]
    assert request["model"] == "llama3.1"
    assert request["stream"] is False
    assert [m["role"] for m in request["messages"]] == ["system", "user"]
    assert "def greet" in request["messages"][1]["content"]


def test_end_to_end_progressive_roo_modes(
    tmp_path: Path,
    digest_file: Path,
    monkeypatch: pytest.MonkeyPatch,
    char_encoding,
) -> None:
    server = LocalServer("roomodes")
    install_server(monkeypatch, server, char_encoding)
    output_dir = tmp_path / "out"

    exit_code = cli.main(
        [
            "demo",
            "--provider",
            "local",
            "--format",
            "roo",
            "--repomix-file",
            str(digest_file),
            "--output-dir",
            str(output_dir),
            "--chunk-size",
            "40",
            "--chunk-delay",
            "0",
            "--yes",
        ],
    )

    assert exit_code == 0
    total = len(server.requests)
    assert total > 1
    assert (output_dir / ".roomodes").read_text(encoding="utf-8") == f"draft {total}"
    assert (output_dir / f"roomodes_chunk_{total}_of_{total}.md").exists()
    second_prompt = server.requests[1]["messages"][1]["content"]
    assert "<current_rules>\n<roomodes>\ndraft 1\n</roomodes>\n</current_rules>" in second_prompt
