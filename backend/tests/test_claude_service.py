import asyncio

import pytest
from claude_agent_sdk import AssistantMessage, ResultMessage, TextBlock, ToolUseBlock

import autobuild.services.claude_service as claude_module
from autobuild.services.agent_invoker import INPUT_MARKER
from autobuild.services.claude_service import ClaudeAgentInvoker


def _result(is_error=False, result=None):
    return ResultMessage(
        subtype="error_during_execution" if is_error else "success",
        duration_ms=10,
        duration_api_ms=8,
        is_error=is_error,
        num_turns=1,
        session_id="sdk-session",
        total_cost_usd=0.01,
        result=result,
    )


def _assistant(*blocks):
    return AssistantMessage(content=list(blocks), model="claude-sonnet-4-5")


def _stub_client(monkeypatch, messages, prompts):
    class StubClient:
        def __init__(self, options=None):
            self.options = options
            self.interrupted = False

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc_info):
            return False

        async def query(self, prompt):
            prompts.append(prompt)

        async def receive_messages(self):
            for message in messages:
                yield message

        async def interrupt(self):
            self.interrupted = True

    monkeypatch.setattr(claude_module, "ClaudeSDKClient", StubClient)


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")


@pytest.mark.asyncio
async def test_run_forwards_text_and_tool_use(monkeypatch, tmp_path):
    prompts = []
    _stub_client(
        monkeypatch,
        [
            _assistant(
                ToolUseBlock(id="t1", name="Write", input={"file_path": "index.html"}),
                TextBlock(text="Created the landing page."),
            ),
            _result(),
        ],
        prompts,
    )
    streamed = []

    async def on_output(line):
        streamed.append(line)

    result = await ClaudeAgentInvoker().run_agent(
        tmp_path, "build a landing page", run_id="r1", on_output=on_output
    )

    assert result.success is True
    assert prompts == ["build a landing page"]
    assert streamed == [
        'Tool use Write: {"file_path": "index.html"}',
        "Created the landing page.",
    ]
    assert result.metadata["session_id"] == "sdk-session"


@pytest.mark.asyncio
async def test_error_result_is_a_failure(monkeypatch, tmp_path):
    _stub_client(monkeypatch, [_result(is_error=True, result="Rate limited")], [])

    result = await ClaudeAgentInvoker().run_agent(tmp_path, "prompt", run_id="r1")

    assert result.success is False
    assert result.error == "Rate limited"


@pytest.mark.asyncio
async def test_input_marker_pauses_run(monkeypatch, tmp_path):
    marker = f'{INPUT_MARKER} {{"question": "Which database?", "options": ["SQLite", "Postgres"]}}'
    _stub_client(monkeypatch, [_assistant(TextBlock(text=marker)), _result()], [])

    result = await ClaudeAgentInvoker().run_agent(tmp_path, "prompt", run_id="r1")

    assert result.needs_input
    assert result.input_request.question == "Which database?"
    assert result.input_request.options == ["SQLite", "Postgres"]


@pytest.mark.asyncio
async def test_trailing_question_pauses_run(monkeypatch, tmp_path):
    question = "Which database should I use? Would you prefer SQLite or Postgres?"
    _stub_client(monkeypatch, [_assistant(TextBlock(text=question)), _result()], [])

    result = await ClaudeAgentInvoker().run_agent(tmp_path, "prompt", run_id="r1")

    assert result.needs_input
    assert result.input_request.options == ["SQLite", "Postgres"]


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_calling_sdk(monkeypatch, tmp_path):
    monkeypatch.delenv("ANTHROPIC_API_KEY")
    prompts = []
    _stub_client(monkeypatch, [], prompts)

    result = await ClaudeAgentInvoker().run_agent(tmp_path, "prompt", run_id="r1")

    assert result.success is False
    assert "API key" in result.error
    assert prompts == []


@pytest.mark.asyncio
async def test_cancel_unknown_run_returns_false():
    assert await ClaudeAgentInvoker().cancel("missing") is False


@pytest.mark.asyncio
async def test_cancel_while_client_is_connecting(monkeypatch, tmp_path):
    prompts = []
    connected = asyncio.Event()
    _stub_client(monkeypatch, [_result()], prompts)

    class SlowClient(claude_module.ClaudeSDKClient):
        async def __aenter__(self):
            await connected.wait()
            return self

    monkeypatch.setattr(claude_module, "ClaudeSDKClient", SlowClient)
    invoker = ClaudeAgentInvoker()

    run = asyncio.create_task(invoker.run_agent(tmp_path, "prompt", run_id="r1"))
    await asyncio.sleep(0)

    assert await invoker.cancel("r1") is True
    connected.set()
    result = await asyncio.wait_for(run, 5)

    assert result.cancelled is True
    assert prompts == []
    assert await invoker.cancel("r1") is False
