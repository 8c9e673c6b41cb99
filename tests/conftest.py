import os
import stat
import sys
import tempfile
import textwrap
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# The app module loads its config at import time; keep it away from the repo.
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="claudeproxy-tests-"))
os.environ.setdefault("CLAUDE_PROXY_CONFIG_FILE", str(_SESSION_DIR / "claude_proxy.toml"))
os.environ.setdefault("CLAUDE_PROXY_LOG_PATH", str(_SESSION_DIR / "claude_proxy.jsonl"))


FAKE_CLI_BODY = textwrap.dedent(
    r'''
    import json
    import os
    import sys
    import time

    args = sys.argv[1:]
    options = args[: args.index("--")] if "--" in args else args
    if "--version" in options:
        print("1.0.0 (Claude Code)", flush=True)
        sys.exit(0)

    mode = os.environ.get("FAKE_CLI_MODE", "echo")
    record = os.environ.get("FAKE_CLI_RECORD")

    stdin_lines = []
    if "--input-format" in options:
        stdin_lines = [line for line in sys.stdin.read().splitlines() if line.strip()]
        message = json.loads(stdin_lines[0])["message"]
        prompt = "".join(
            block.get("text", "") for block in message["content"] if block["type"] == "text"
        )
    else:
        rest = args[len(options) + 1 :]
        prompt = rest[0] if rest else ""

    if record:
        with open(record, "w", encoding="utf-8") as fh:
            json.dump({"args": args, "stdin": stdin_lines, "cwd": os.getcwd()}, fh)

    if mode == "sleep":
        time.sleep(30)
        sys.exit(0)
    if mode == "fail":
        print("boom: not logged in", file=sys.stderr, flush=True)
        sys.exit(3)

    reply = "pong" if "ping" in prompt else "echo: " + prompt
    model = "claude-sonnet-4-5-20250929"
    if mode == "garbage":
        print("this is not json", flush=True)
    print(json.dumps({"type": "system", "subtype": "init"}), flush=True)
    half = len(reply) // 2
    for piece in (reply[:half], reply[half:]):
        event = {
            "type": "stream_event",
            "event": {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "text_delta", "text": piece},
            },
        }
        print(json.dumps(event), flush=True)
    print(
        json.dumps(
            {
                "type": "assistant",
                "message": {
                    "role": "assistant",
                    "model": model,
                    "content": [{"type": "text", "text": reply}],
                    "stop_reason": "end_turn",
                },
            }
        ),
        flush=True,
    )
    print(
        json.dumps(
            {
                "type": "result",
                "subtype": "success",
                "is_error": False,
                "result": reply,
                "usage": {"input_tokens": 7, "output_tokens": 2},
                "modelUsage": {model: {"inputTokens": 7, "outputTokens": 2}},
            }
        ),
        flush=True,
    )
    '''
)


@pytest.fixture
def fake_cli(tmp_path):
    """Path to an executable that speaks the CLI's stream-json protocol.

    Behaviour is selected with ``FAKE_CLI_MODE`` (echo, sleep, fail, garbage);
    ``FAKE_CLI_RECORD`` names a file that receives the argv and stdin it saw.
    """

    script = tmp_path / "claude"
    script.write_text(f"#!{sys.executable}\n{FAKE_CLI_BODY}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)
