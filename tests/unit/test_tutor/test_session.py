"""TutorSession tests — turn engine, tool loop, timeouts, and history.

The model is always a scripted MockInference (see tests/unit/conftest.py);
file tools run against an offline sandbox so no git binary is needed.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from gla.errors import InferenceTimeoutError
from gla.models.events import CommandExecuted, TextDelta, ToolInvocation, TurnComplete
from gla.models.schemas import CommandResult, ToolCall
from gla.tutor import prompts
from gla.tutor.session import TutorSession, git_command_from_input


async def _collect(events) -> list:
    return [event async for event in events]


def _tool_call(call_id: str, name: str, **arguments) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=json.dumps(arguments))


# ─────────────────────────────────────────────────────────────────────────────
# 1. Input classification
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("text,expected", [
    ("git add .", "add ."),
    ("  git commit -m \"first\"  ", 'commit -m "first"'),
    ("GIT status", "status"),
    ("status", "status"),
    ("checkout -b feature", "checkout -b feature"),
    ("what is a branch?", None),
    ("How do I undo a commit?", None),
    ("git", None),
    ("", None),
])
def test_git_command_from_input(text, expected):
    assert git_command_from_input(text) == expected


# ─────────────────────────────────────────────────────────────────────────────
# 2. Plain turns
# ─────────────────────────────────────────────────────────────────────────────

class TestPlainTurns:

    def test_system_prompt_names_sandbox_and_branch(self, offline_sandbox, make_inference):
        session = TutorSession(make_inference(), offline_sandbox)
        system = session.messages[0]
        assert system["role"] == "system"
        assert str(offline_sandbox.root_path) in system["content"]
        assert "branch `main`" in system["content"]

    @pytest.mark.asyncio
    async def test_text_turn_streams_and_records_history(self, offline_sandbox, make_inference):
        client = make_inference([["A branch ", "is a pointer."]])
        session = TutorSession(client, offline_sandbox)

        events = await _collect(session.process_user_input("what is a branch?"))

        assert events[:2] == [TextDelta(text="A branch "), TextDelta(text="is a pointer.")]
        done = events[-1]
        assert isinstance(done, TurnComplete)
        assert done.text == "A branch is a pointer."
        assert done.tool_rounds == 0
        assert not done.truncated

        assert session.messages[-2] == {"role": "user", "content": "what is a branch?"}
        assert session.messages[-1] == {"role": "assistant", "content": "A branch is a pointer."}

    @pytest.mark.asyncio
    async def test_start_sends_greeting(self, offline_sandbox, make_inference):
        client = make_inference([["Hi!"]])
        session = TutorSession(client, offline_sandbox)

        await _collect(session.start())

        assert client.requests[0][-1] == {"role": "user", "content": prompts.GREETING_PROMPT}

    @pytest.mark.asyncio
    async def test_setup_scenario_prompt(self, offline_sandbox, make_inference):
        client = make_inference()
        session = TutorSession(client, offline_sandbox)

        await _collect(session.setup_scenario("staging files and making commits", "beginner"))

        prompt = client.requests[0][-1]["content"]
        assert "beginner level" in prompt
        assert "staging files and making commits" in prompt

    @pytest.mark.asyncio
    async def test_tool_schemas_are_sent_every_round(self, offline_sandbox, make_inference):
        client = make_inference()
        session = TutorSession(client, offline_sandbox)

        await _collect(session.process_user_input("hello"))

        names = {tool["function"]["name"] for tool in client.tools_seen[0]}
        assert "create_file" in names
        assert "run_git_command" in names


# ─────────────────────────────────────────────────────────────────────────────
# 3. Tool loop
# ─────────────────────────────────────────────────────────────────────────────

class TestToolLoop:

    @pytest.mark.asyncio
    async def test_tool_call_is_dispatched_and_fed_back(self, offline_sandbox, make_inference):
        client = make_inference([
            ["Setting up.", _tool_call("call_1", "create_file", fileName="hello.txt", content="hi\n")],
            ["Done! Now run git status."],
        ])
        session = TutorSession(client, offline_sandbox)

        events = await _collect(session.process_user_input("teach me staging"))

        kinds = [type(e).__name__ for e in events]
        assert kinds == ["TextDelta", "ToolInvocation", "TextDelta", "TurnComplete"]
        invocation = events[1]
        assert invocation.tool_name == "create_file"
        assert invocation.arguments == {"fileName": "hello.txt", "content": "hi\n"}

        assert await offline_sandbox.read_file("hello.txt") == "hi\n"

        # The second request carries the assistant's tool call and its result
        second = client.requests[1]
        assert second[-2]["role"] == "assistant"
        assert second[-2]["tool_calls"][0]["id"] == "call_1"
        assert second[-1] == {"role": "tool", "tool_call_id": "call_1", "content": "Created file: hello.txt"}

        done = events[-1]
        assert done.tool_rounds == 1
        assert done.tool_calls == 1
        assert done.text == "Setting up.Done! Now run git status."

    @pytest.mark.asyncio
    async def test_rejected_tool_call_is_reported_to_the_model(self, offline_sandbox, make_inference):
        client = make_inference([
            [ToolCall(id="bad", name="rm_rf", arguments="{}")],
            ["Sorry about that."],
        ])
        session = TutorSession(client, offline_sandbox)

        events = await _collect(session.process_user_input("hi"))

        tool_message = client.requests[1][-1]
        assert tool_message["role"] == "tool"
        assert tool_message["tool_call_id"] == "bad"
        assert tool_message["content"].startswith("Error: Unknown tool")
        assert isinstance(events[-1], TurnComplete)
        assert not events[-1].truncated

    @pytest.mark.asyncio
    async def test_escaping_path_is_reported_not_raised(self, offline_sandbox, make_inference):
        client = make_inference([
            [_tool_call("c1", "create_file", fileName="../../etc/evil", content="x")],
            ["ok"],
        ])
        session = TutorSession(client, offline_sandbox)

        await _collect(session.process_user_input("hi"))

        assert client.requests[1][-1]["content"].startswith("Error: ")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("existing,target", [
        ("a.txt", "a.txt/b.txt"),
        ("src/a.txt", "src"),
    ])
    async def test_filesystem_failure_is_reported_not_raised(
        self, offline_sandbox, make_inference, existing, target
    ):
        await offline_sandbox.create_file(existing, "keep")
        client = make_inference([
            [_tool_call("c1", "create_file", fileName=target, content="x")],
            ["Let me try another name."],
        ])
        session = TutorSession(client, offline_sandbox)

        events = await _collect(session.process_user_input("hi"))

        tool_message = client.requests[1][-1]
        assert tool_message["tool_call_id"] == "c1"
        assert tool_message["content"].startswith(f"Error: Could not write {target}")
        assert isinstance(events[-1], TurnComplete)
        assert await offline_sandbox.read_file(existing) == "keep"

    @pytest.mark.asyncio
    async def test_unparseable_arguments_surface_raw(self, offline_sandbox, make_inference):
        client = make_inference([
            [ToolCall(id="c1", name="read_file", arguments="{oops")],
            ["ok"],
        ])
        session = TutorSession(client, offline_sandbox)

        events = await _collect(session.process_user_input("hi"))

        invocation = next(e for e in events if isinstance(e, ToolInvocation))
        assert invocation.arguments == {"_raw": "{oops"}
        assert "not valid JSON" in client.requests[1][-1]["content"]

    @pytest.mark.asyncio
    async def test_tool_rounds_are_bounded(self, offline_sandbox, make_inference):
        looping = [[_tool_call(f"c{i}", "list_files")] for i in range(10)]
        client = make_inference(looping)
        session = TutorSession(client, offline_sandbox, max_tool_rounds=3)

        events = await _collect(session.process_user_input("hi"))

        done = events[-1]
        assert isinstance(done, TurnComplete)
        assert done.truncated
        assert done.tool_rounds == 3
        assert len(client.requests) == 3


# ─────────────────────────────────────────────────────────────────────────────
# 4. Git commands from the learner
# ─────────────────────────────────────────────────────────────────────────────

class TestLearnerCommands:

    @pytest.mark.asyncio
    async def test_git_command_runs_before_the_tutor_reviews_it(self, offline_sandbox, make_inference):
        client = make_inference([["Nice work!"]])
        session = TutorSession(client, offline_sandbox)
        result = CommandResult(success=True, stdout="On branch main", exit_code=0)

        with patch.object(offline_sandbox, "execute_command", AsyncMock(return_value=result)) as run:
            events = await _collect(session.process_user_input("git status"))

        run.assert_awaited_once_with("status")
        assert events[0] == CommandExecuted(command="status", result=result)
        assert isinstance(events[-1], TurnComplete)

        prompt = client.requests[0][-1]["content"]
        assert "The user ran this Git command: git status" in prompt
        assert "Success: True" in prompt
        assert "On branch main" in prompt

    @pytest.mark.asyncio
    async def test_failed_command_includes_error_in_prompt(self, offline_sandbox, make_inference):
        client = make_inference()
        session = TutorSession(client, offline_sandbox)
        result = CommandResult(success=False, stderr="fatal: bad revision", exit_code=128)

        with patch.object(offline_sandbox, "execute_command", AsyncMock(return_value=result)):
            await _collect(session.process_user_input("log nowhere"))

        prompt = client.requests[0][-1]["content"]
        assert "Success: False" in prompt
        assert "Error: fatal: bad revision" in prompt
        assert "(no output)" in prompt


# ─────────────────────────────────────────────────────────────────────────────
# 5. Timeouts and history
# ─────────────────────────────────────────────────────────────────────────────

class TestTimeoutsAndHistory:

    @pytest.mark.asyncio
    async def test_stalled_stream_raises_timeout(self, offline_sandbox, make_inference):
        client = make_inference([["never arrives"]], chunk_delay=1.0)
        session = TutorSession(client, offline_sandbox, chunk_timeout=0.05)

        with pytest.raises(InferenceTimeoutError, match="did not respond"):
            await _collect(session.process_user_input("hi"))

    @pytest.mark.asyncio
    async def test_history_keeps_system_prompt_and_recent_turns(self, offline_sandbox, make_inference):
        client = make_inference()
        session = TutorSession(client, offline_sandbox, history_turns=2)

        for question in ("one", "two", "three"):
            await _collect(session.process_user_input(question))

        user_turns = [m["content"] for m in session.messages if m["role"] == "user"]
        assert user_turns == ["two", "three"]
        assert session.messages[0]["role"] == "system"
