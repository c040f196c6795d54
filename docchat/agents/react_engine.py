"""
Reason-Act-Observe loop that drives tool use to a final answer.

States: IDLE -> THINKING -> (ACTING -> THINKING)* -> DONE | ABORTED | ERROR.
One run at a time per engine; each run gets its own cancellation event,
which the injected LLM caller is expected to honor.
"""

import json
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..util.logging import logger
from .tools import ToolDefinition

MAX_OBSERVATION_CHARS = 2000
TRUNCATION_MARKER = "... (truncated)"

EVENTS = ("start", "thinking", "thought", "action_start", "action_end", "success", "error", "timeout", "abort")

LLMCaller = Callable[[str, threading.Event], str]

_FINAL_ANSWER = re.compile(r'Final Answer:\s*([\s\S]+)', re.I)
_ACTION = re.compile(r'Action:\s*(.+?)(?:\n|$)', re.I)
_ACTION_INPUT = re.compile(r'Action Input:\s*([\s\S]+?)(?:\nObservation:|$)', re.I)
_LEADING_THOUGHT = re.compile(r'^\s*Thought:\s*', re.I)


class OperationCancelled(Exception):
    """Raised when a run's cancellation event has been set."""


class LLMCallError(RuntimeError):
    """Raised when the LLM caller fails for a reason other than cancellation."""


class MaxStepsExceededError(RuntimeError):
    """Raised when a run uses all its steps without a final answer."""


class EngineBusyError(RuntimeError):
    """Raised when run() is called while another run is in flight."""


class EngineState(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    ACTING = "acting"
    DONE = "done"
    ABORTED = "aborted"
    ERROR = "error"


@dataclass
class ToolCall:
    tool: str
    args: Any


@dataclass
class ReActStep:
    """One resolved step of a run."""
    thought: str
    action: Optional[ToolCall] = None
    observation: Optional[str] = None


@dataclass
class ParsedReply:
    thought: str
    final_answer: Optional[str] = None
    action: Optional[str] = None
    action_input: Any = None


def parse_action_input(raw: Optional[str]) -> Any:
    """JSON objects become dicts; anything else stays a plain string."""
    if raw is None:
        return None
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()
    if text.startswith("{"):
        try:
            value = json.loads(text)
            if isinstance(value, dict):
                return value
        except ValueError:
            pass
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1]
    return text


class ReActEngine:
    """
    Thought -> Action -> Observation loop.

    Tool failures and unknown tools become observation text so the model can
    correct itself. A run ends with an exception only on LLM failure, step
    exhaustion or an unexpected error.
    """

    def __init__(self, llm_caller: LLMCaller, max_steps: int = 10):
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.llm_caller = llm_caller
        self.max_steps = max_steps
        self.tools: Dict[str, ToolDefinition] = {}
        self.history: List[ReActStep] = []
        self.state = EngineState.IDLE
        self._listeners: Dict[str, List[Callable[[Dict[str, Any]], None]]] = {e: [] for e in EVENTS}
        self._run_lock = threading.Lock()
        self._cancel_event: Optional[threading.Event] = None

    def register_tool(self, name: str, description: str, execute: Callable[[Any], Any],
                      param_schema: Dict[str, Any] = None) -> None:
        self.register(ToolDefinition(name=name, description=description, execute=execute,
                                     param_schema=param_schema or {}))

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self.tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self.tools[tool.name] = tool

    def on(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Subscribe to a lifecycle event."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        if callback in self._listeners.get(event, []):
            self._listeners[event].remove(callback)

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Listener for '{event}' failed: {e}")

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def abort(self) -> bool:
        """Signal cancellation of the in-flight run. Returns False if nothing is running."""
        cancel = self._cancel_event
        if cancel is None:
            return False
        cancel.set()
        return True

    def construct_prompt(self, goal: str) -> str:
        tool_lines = "\n".join(f"{t.name}: {t.description}" for t in self.tools.values())
        tool_names = ", ".join(self.tools)

        history_lines = []
        for step in self.history:
            history_lines.append(f"Thought: {step.thought}")
            if step.action is not None:
                args = step.action.args
                rendered = args if isinstance(args, str) else json.dumps(args, ensure_ascii=False)
                history_lines.append(f"Action: {step.action.tool}")
                history_lines.append(f"Action Input: {rendered}")
                history_lines.append(f"Observation: {step.observation}")

        prompt = (
            "Answer the following question as best you can. You have access to the following tools:\n\n"
            f"{tool_lines}\n\n"
            "Use the following format:\n\n"
            "Question: the input question you must answer\n"
            "Thought: you should always think about what to do\n"
            f"Action: the action to take, should be one of [{tool_names}]\n"
            "Action Input: the input to the action\n"
            "Observation: the result of the action\n"
            "... (this Thought/Action/Action Input/Observation can repeat N times)\n"
            "Thought: I now know the final answer\n"
            "Final Answer: the final answer to the original input question\n\n"
            "Begin!\n\n"
            f"Question: {goal}\n"
        )
        if history_lines:
            prompt += "\n".join(history_lines) + "\n"
        return prompt + "Thought:"

    @staticmethod
    def parse_response(reply: str) -> ParsedReply:
        text = _LEADING_THOUGHT.sub("", reply or "", count=1).strip()

        final = _FINAL_ANSWER.search(text)
        if final:
            return ParsedReply(thought=text[:final.start()].strip(), final_answer=final.group(1).strip())

        action = _ACTION.search(text)
        if action:
            action_input = _ACTION_INPUT.search(text, action.end())
            return ParsedReply(
                thought=text[:action.start()].strip(),
                action=action.group(1).strip(),
                action_input=parse_action_input(action_input.group(1)) if action_input else None,
            )

        return ParsedReply(thought=text)

    def _check_cancelled(self, cancel: threading.Event) -> None:
        if cancel.is_set():
            raise OperationCancelled()

    def _call_llm(self, prompt: str, cancel: threading.Event) -> str:
        try:
            reply = self.llm_caller(prompt, cancel)
        except OperationCancelled:
            raise
        except Exception as e:
            if cancel.is_set():
                raise OperationCancelled() from e
            raise LLMCallError(f"LLM call failed: {e}") from e
        return str(reply or "").strip()

    def _execute_tool(self, name: str, args: Any) -> str:
        tool = self.tools.get(name)
        if tool is None:
            output = f"Error: Tool '{name}' not found. Available tools: {', '.join(self.tools)}"
        else:
            try:
                output = tool.execute(args)
            except Exception as e:
                output = f"Error executing tool '{name}': {e}"

        if not isinstance(output, str):
            output = json.dumps(output, ensure_ascii=False, default=str)
        if len(output) > MAX_OBSERVATION_CHARS:
            output = output[:MAX_OBSERVATION_CHARS] + TRUNCATION_MARKER
        return output

    def run(self, goal: str) -> Optional[str]:
        """
        Run the loop until a final answer.

        Returns:
            The final answer, or None if the run was aborted

        Raises:
            EngineBusyError: if another run is in flight on this engine
            MaxStepsExceededError: if max_steps pass without a final answer
            LLMCallError: if the LLM caller fails
        """
        if not self._run_lock.acquire(blocking=False):
            raise EngineBusyError("ReActEngine is already running")
        try:
            self._cancel_event = threading.Event()
            return self._run(goal, self._cancel_event)
        finally:
            self._cancel_event = None
            self._run_lock.release()

    def _run(self, goal: str, cancel: threading.Event) -> Optional[str]:
        self.history = []
        self.state = EngineState.THINKING
        step = 0
        self._emit("start", {"goal": goal})
        logger.log_react_event("start", step, {"goal": goal})

        try:
            while step < self.max_steps:
                self._check_cancelled(cancel)
                step += 1

                prompt = self.construct_prompt(goal)
                self._emit("thinking", {"step": step, "prompt": prompt})
                reply = self._call_llm(prompt, cancel)
                self._check_cancelled(cancel)

                parsed = self.parse_response(reply)
                self._emit("thought", {"step": step, "thought": parsed.thought})

                if parsed.final_answer is not None:
                    self.state = EngineState.DONE
                    self._emit("success", {"answer": parsed.final_answer, "history": list(self.history)})
                    logger.log_react_event("success", step, {"answer": parsed.final_answer})
                    return parsed.final_answer

                if parsed.action is None:
                    # Record the bare thought so the next prompt moves on
                    self.history.append(ReActStep(thought=parsed.thought))
                    continue

                self.state = EngineState.ACTING
                self._emit("action_start", {"step": step, "tool": parsed.action, "args": parsed.action_input})
                observation = self._execute_tool(parsed.action, parsed.action_input)
                self._check_cancelled(cancel)
                self._emit("action_end", {"step": step, "tool": parsed.action, "observation": observation})
                logger.log_react_event("action", step, {"tool": parsed.action, "observation": observation})

                self.history.append(ReActStep(
                    thought=parsed.thought,
                    action=ToolCall(tool=parsed.action, args=parsed.action_input),
                    observation=observation,
                ))
                self.state = EngineState.THINKING

            self.state = EngineState.ERROR
            self._emit("timeout", {"steps": step, "history": list(self.history)})
            logger.log_react_event("timeout", step, status="timeout")
            raise MaxStepsExceededError(f"Max steps ({self.max_steps}) reached without final answer")

        except OperationCancelled:
            self.state = EngineState.ABORTED
            self._emit("abort", {"step": step, "history": list(self.history)})
            logger.log_react_event("abort", step, status="aborted")
            return None
        except MaxStepsExceededError:
            raise
        except Exception as e:
            self.state = EngineState.ERROR
            self._emit("error", {"step": step, "error": str(e)})
            logger.log_react_event("error", step, {"error": str(e)}, status="failed")
            raise
