"""
Test cases for the ReActEngine loop, parsing, events and cancellation.
"""

import threading
import pytest
from unittest.mock import MagicMock

from docchat.agents.react_engine import (
    EngineBusyError,
    EngineState,
    LLMCallError,
    MaxStepsExceededError,
    OperationCancelled,
    ReActEngine,
    TRUNCATION_MARKER,
)


def scripted(*replies):
    """LLM caller that returns the given replies in order."""
    remaining = list(replies)
    prompts = []

    def llm(prompt, cancel_event):
        prompts.append(prompt)
        return remaining.pop(0)

    llm.prompts = prompts
    return llm


def record_events(engine):
    events = []
    for name in ("start", "thinking", "thought", "action_start", "action_end",
                 "success", "error", "timeout", "abort"):
        engine.on(name, lambda payload, _name=name: events.append(_name))
    return events


def test_tool_result_feeds_final_answer():
    """One tool call, then the model answers with the observation."""
    llm = scripted(
        "Thought: I should look this up\nAction: Search\nAction Input: what is the answer",
        "Thought: I now know the final answer\nFinal Answer: 42",
    )
    engine = ReActEngine(llm)
    engine.register_tool("Search", "Looks things up", lambda args: "42")
    events = record_events(engine)

    answer = engine.run("what is the answer")

    assert answer == "42"
    assert len(engine.history) == 1
    step = engine.history[0]
    assert step.thought == "I should look this up"
    assert step.action.tool == "Search"
    assert step.action.args == "what is the answer"
    assert step.observation == "42"
    assert "Observation: 42" in llm.prompts[1]
    assert engine.state == EngineState.DONE
    assert events == ["start", "thinking", "thought", "action_start", "action_end",
                      "thinking", "thought", "success"]


def test_immediate_final_answer_calls_no_tool():
    tool = MagicMock(return_value="unused")
    engine = ReActEngine(scripted("Final Answer: Paris"))
    engine.register_tool("Search", "Looks things up", tool)

    assert engine.run("capital of France?") == "Paris"
    tool.assert_not_called()
    assert engine.history == []


def test_unknown_tool_becomes_observation():
    engine = ReActEngine(scripted(
        "Action: Lookup\nAction Input: x",
        "Final Answer: done",
    ))
    engine.register_tool("Search", "Looks things up", lambda args: "ok")

    assert engine.run("goal") == "done"
    observation = engine.history[0].observation
    assert "not found" in observation
    assert "Available tools: Search" in observation


def test_tool_exception_becomes_observation():
    def boom(args):
        raise RuntimeError("index missing")

    engine = ReActEngine(scripted("Action: Search\nAction Input: x", "Final Answer: sorry"))
    engine.register_tool("Search", "Looks things up", boom)

    assert engine.run("goal") == "sorry"
    assert engine.history[0].observation == "Error executing tool 'Search': index missing"


def test_long_observation_is_truncated():
    engine = ReActEngine(scripted("Action: Dump\nAction Input: all", "Final Answer: ok"))
    engine.register_tool("Dump", "Dumps text", lambda args: "x" * 5000)

    engine.run("goal")

    observation = engine.history[0].observation
    assert len(observation) == 2000 + len(TRUNCATION_MARKER)
    assert observation.endswith(TRUNCATION_MARKER)


def test_long_tool_error_is_truncated():
    def boom(args):
        raise RuntimeError("e" * 5000)

    engine = ReActEngine(scripted("Action: Search\nAction Input: x", "Final Answer: sorry"))
    engine.register_tool("Search", "Looks things up", boom)

    engine.run("goal")

    observation = engine.history[0].observation
    assert observation.startswith("Error executing tool 'Search': eee")
    assert len(observation) == 2000 + len(TRUNCATION_MARKER)
    assert observation.endswith(TRUNCATION_MARKER)


def test_non_string_observation_is_serialized():
    engine = ReActEngine(scripted("Action: Count\nAction Input: {}", "Final Answer: ok"))
    engine.register_tool("Count", "Counts", lambda args: {"count": 3})

    engine.run("goal")

    assert engine.history[0].observation == '{"count": 3}'


def test_reply_without_action_records_thought():
    engine = ReActEngine(scripted("Let me think about this.", "Final Answer: 7"))

    assert engine.run("goal") == "7"
    assert len(engine.history) == 1
    assert engine.history[0].action is None
    assert engine.history[0].thought == "Let me think about this."


def test_max_steps_raises_after_timeout_event():
    engine = ReActEngine(lambda prompt, cancel: "Still thinking...", max_steps=3)
    events = record_events(engine)

    with pytest.raises(MaxStepsExceededError):
        engine.run("goal")

    assert events.count("thinking") == 3
    assert "timeout" in events
    assert "error" not in events
    assert engine.state == EngineState.ERROR


def test_llm_failure_is_wrapped():
    def failing(prompt, cancel):
        raise ConnectionError("refused")

    engine = ReActEngine(failing)
    events = record_events(engine)

    with pytest.raises(LLMCallError, match="LLM call failed"):
        engine.run("goal")

    assert events[-1] == "error"
    assert engine.state == EngineState.ERROR


def test_abort_during_tool_leaves_no_dangling_step():
    engine = ReActEngine(scripted("Action: Slow\nAction Input: x", "Final Answer: never"))
    events = record_events(engine)

    def slow(args):
        engine.abort()
        return "partial"

    engine.register_tool("Slow", "Takes a while", slow)

    result = engine.run("goal")

    assert result is None
    assert engine.history == []
    assert engine.state == EngineState.ABORTED
    assert events[-1] == "abort"
    assert "error" not in events


def test_abort_from_another_thread_cancels_llm_wait():
    def waiting_llm(prompt, cancel_event):
        cancel_event.wait(5)
        raise OperationCancelled()

    engine = ReActEngine(waiting_llm)
    engine.on("thinking", lambda payload: threading.Timer(0.05, engine.abort).start())

    assert engine.run("goal") is None
    assert engine.state == EngineState.ABORTED


def test_abort_when_idle_returns_false():
    assert ReActEngine(scripted()).abort() is False


def test_concurrent_run_rejected():
    errors = []
    engine = ReActEngine(None)

    def llm(prompt, cancel_event):
        try:
            engine.run("second goal")
        except EngineBusyError as e:
            errors.append(e)
        return "Final Answer: first"

    engine.llm_caller = llm

    assert engine.run("first goal") == "first"
    assert len(errors) == 1
    assert engine.is_running is False


def test_history_reset_between_runs():
    engine = ReActEngine(scripted(
        "Action: Search\nAction Input: a", "Final Answer: one",
        "Final Answer: two",
    ))
    engine.register_tool("Search", "Looks things up", lambda args: "r")

    engine.run("first")
    assert len(engine.history) == 1

    engine.run("second")
    assert engine.history == []


def test_listener_errors_do_not_break_run():
    engine = ReActEngine(scripted("Final Answer: fine"))

    def broken(payload):
        raise ValueError("listener bug")

    engine.on("start", broken)

    assert engine.run("goal") == "fine"


def test_duplicate_tool_rejected():
    engine = ReActEngine(scripted())
    engine.register_tool("Search", "a", lambda args: "")
    with pytest.raises(ValueError):
        engine.register_tool("Search", "b", lambda args: "")


def test_unknown_event_rejected():
    with pytest.raises(ValueError):
        ReActEngine(scripted()).on("finished", lambda payload: None)


class TestParseResponse:
    def test_final_answer_wins_over_action(self):
        parsed = ReActEngine.parse_response("Action: Search\nAction Input: x\nFinal Answer: 5")
        assert parsed.final_answer == "5"
        assert parsed.action is None

    def test_leading_thought_label_stripped(self):
        parsed = ReActEngine.parse_response("Thought: check the index\nAction: Search\nAction Input: q")
        assert parsed.thought == "check the index"
        assert parsed.action == "Search"
        assert parsed.action_input == "q"

    def test_json_action_input_parsed(self):
        parsed = ReActEngine.parse_response('Action: grep\nAction Input: {"query": "BM25", "limit": 3}')
        assert parsed.action_input == {"query": "BM25", "limit": 3}

    def test_quoted_action_input_unwrapped(self):
        parsed = ReActEngine.parse_response('Action: Search\nAction Input: "vector store"')
        assert parsed.action_input == "vector store"

    def test_multiline_final_answer(self):
        parsed = ReActEngine.parse_response("final answer: line one\nline two")
        assert parsed.final_answer == "line one\nline two"


def test_prompt_lists_tools_goal_and_history():
    engine = ReActEngine(scripted())
    engine.register_tool("Search", "Looks things up", lambda args: "")

    prompt = engine.construct_prompt("find the answer")

    assert "Search: Looks things up" in prompt
    assert "should be one of [Search]" in prompt
    assert "Question: find the answer" in prompt
    assert prompt.endswith("Thought:")
