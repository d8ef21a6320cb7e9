from __future__ import annotations
import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence

from hooks import HookRegistry, StepContext
from operations import OPERATIONS, Operations
from parser import (
    Assign,
    Call,
    End,
    Exec,
    Instruction,
    Jump,
    JumpIfFalse,
    JumpIfTrue,
    LabelRef,
    Literal,
    Operand,
    Output,
    Return,
    SourceLocation,
    Variable,
    format_instruction,
)
from resolver import Function, Program, load_program
from values import (
    TYPE_BLOCK,
    UNIT,
    ArityMismatch,
    BlockRef,
    MachinaRuntimeError,
    StackOverflow,
    StepBudgetExceeded,
    TypeMismatch,
    UnknownFunction,
    UnknownVariable,
    Value,
    render,
    truthy,
)


DEFAULT_ENTRY = "main"
DEFAULT_MAX_DEPTH = 10000
DEFAULT_HISTORY = 256

FRAME_RUNNING = "running"
FRAME_CALLING = "calling"
FRAME_RETURNING = "returning"
FRAME_HALTED = "halted"


@dataclass
class Frame:
    function: Function
    frame_id: str
    call_location: Optional[SourceLocation]
    bindings: Dict[str, Value] = field(default_factory=dict)
    ip: int = 0
    # Caller's variable that receives this frame's return value.
    return_dest: Optional[str] = None
    state: str = FRAME_RUNNING

    @property
    def name(self) -> str:
        return self.function.name

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = render(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(v) for k, v in self.bindings.items()}


@dataclass
class StateEntry:
    step_index: int
    frame_id: Optional[str]
    function: Optional[str]
    instruction_index: int
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, str]]


class StateLogger:
    def __init__(self, verbose: bool, history: int = DEFAULT_HISTORY) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(self, *, frame: Frame, location: Optional[SourceLocation]) -> StateEntry:
        entry = StateEntry(
            step_index=self.next_state_index,
            frame_id=frame.frame_id,
            function=frame.name,
            instruction_index=frame.ip,
            source_location=location,
            statement=location.statement if location else None,
            env_snapshot=frame.snapshot() if self.verbose else None,
        )
        self.entries.append(entry)
        self.frame_last_entry[frame.frame_id] = entry
        self.next_state_index += 1
        return entry

    def forget_frame(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)


class Interpreter:
    def __init__(
        self,
        *,
        source: str = "",
        filename: str = "<string>",
        verbose: bool = False,
        entry: str = DEFAULT_ENTRY,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_steps: Optional[int] = None,
        hooks: Optional[HookRegistry] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        program: Optional[Program] = None,
    ) -> None:
        if max_depth <= 0:
            raise ValueError("max_depth must be >= 1")
        self.source = source
        self.filename = filename
        self.verbose = verbose
        self.entry = entry
        self.max_depth = max_depth
        self.max_steps = max_steps
        self.hooks = hooks or HookRegistry()
        self.output_sink = output_sink or (lambda text: print(text))
        self.operations: Operations = OPERATIONS
        if max_steps is not None and max_steps <= 0:
            raise ValueError("max_steps must be >= 1")

        self.program: Optional[Program] = program
        self.logger = StateLogger(verbose=verbose)
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        # Step index of the first instruction of the current call.
        self.run_start_step = 0

    def load(self) -> Program:
        if self.program is None:
            self.program = load_program(self.source, self.filename)
        return self.program

    def run(self) -> Value:
        """Load the program and run its entry function to completion."""
        program = self.load()
        self._emit_event("program_start", self, program)
        result = self.call(self.entry, [])
        self._emit_event("program_end", self, result)
        return result

    def call(self, name: str, args: Sequence[Value]) -> Value:
        """Run function `name` with already-evaluated arguments and return its result."""
        program = self.load()
        self.call_stack = []
        self.run_start_step = self.logger.next_state_index
        try:
            function = self._lookup(program, name, None)
            self._check_arity(function, len(args), None)
            self._push_frame(function, list(args), return_dest=None, call_location=None)
            return self._execute()
        except MachinaRuntimeError as error:
            if error.step_index is None:
                error.step_index = self.logger.next_state_index - 1
            self._report_error(error)
            raise
        except Exception as exc:
            # Convert unexpected Python-level exceptions into MachinaRuntimeError
            # so callers can format them using Machina tracebacks.
            loc = None
            if self.logger.entries:
                loc = self.logger.entries[-1].source_location
            wrapped = MachinaRuntimeError(f"Internal interpreter error: {exc}", location=loc, rule="internal")
            wrapped.step_index = self.logger.next_state_index - 1
            self._report_error(wrapped)
            raise wrapped from exc

    def _report_error(self, error: MachinaRuntimeError) -> None:
        """Fire `on_error` hooks; a failing hook is recorded on the error instead of replacing it."""
        for _priority, handler in self.hooks.handlers("on_error"):
            try:
                handler(self, error)
            except Exception as exc:
                error.hook_failures.append(exc)

    def _execute(self) -> Value:
        result = UNIT
        call_stack = self.call_stack
        log_step = self._log_step
        resolve = self._resolve
        emit_before = self.hooks.has_handlers("before_instruction")

        while call_stack:
            frame = call_stack[-1]
            instructions = frame.function.instructions
            if frame.ip >= len(instructions):
                # Body exhausted without ret/end.
                frame.state = FRAME_HALTED
                result = self._return_from(frame, UNIT)
                continue
            instruction = instructions[frame.ip]
            log_step(frame, instruction)
            if emit_before:
                self._emit_event("before_instruction", self, frame, instruction)

            if isinstance(instruction, Assign):
                args = [resolve(arg, frame, instruction) for arg in instruction.args]
                frame.bindings[instruction.dest] = self.operations.invoke(instruction.op, args, instruction.location)
                frame.ip += 1
            elif isinstance(instruction, Jump):
                frame.ip = instruction.target.index
            elif isinstance(instruction, JumpIfTrue):
                if truthy(resolve(instruction.cond, frame, instruction), "jmpt", instruction.location):
                    frame.ip = instruction.target.index
                else:
                    frame.ip += 1
            elif isinstance(instruction, JumpIfFalse):
                if truthy(resolve(instruction.cond, frame, instruction), "jmpf", instruction.location):
                    frame.ip += 1
                else:
                    frame.ip = instruction.target.index
            elif isinstance(instruction, Call):
                self._call_instruction(frame, instruction)
            elif isinstance(instruction, Return):
                value = UNIT if instruction.value is None else resolve(instruction.value, frame, instruction)
                frame.state = FRAME_RETURNING
                result = self._return_from(frame, value)
            elif isinstance(instruction, Output):
                self.output_sink(render(resolve(instruction.value, frame, instruction)))
                frame.ip += 1
            elif isinstance(instruction, Exec):
                frame.ip = self._exec_target(frame, instruction)
            elif isinstance(instruction, End):
                frame.state = FRAME_RETURNING
                result = self._return_from(frame, UNIT)
            else:
                raise MachinaRuntimeError(
                    f"Unsupported instruction {instruction.__class__.__name__}",
                    location=instruction.location,
                    rule="internal",
                )
        return result

    def _call_instruction(self, frame: Frame, instruction: Call) -> None:
        args = [self._resolve(arg, frame, instruction) for arg in instruction.args]
        function = self._lookup(self.program, instruction.function, instruction.location)
        self._check_arity(function, len(args), instruction.location)
        frame.state = FRAME_CALLING
        self._push_frame(function, args, return_dest=instruction.dest, call_location=instruction.location)

    def _return_from(self, frame: Frame, value: Value) -> Value:
        self.call_stack.pop()
        self.logger.forget_frame(frame.frame_id)
        if self.call_stack:
            caller = self.call_stack[-1]
            if frame.return_dest is not None:
                caller.bindings[frame.return_dest] = value
            caller.state = FRAME_RUNNING
            caller.ip += 1
            self._emit_event("after_call", self, frame.name, value, frame.call_location)
        return value

    def _exec_target(self, frame: Frame, instruction: Exec) -> int:
        value = self._resolve(instruction.block, frame, instruction)
        if value.type != TYPE_BLOCK:
            raise TypeMismatch(
                f"exec expects a block reference, got {value.type}",
                location=instruction.location,
                rule="exec",
            )
        ref: BlockRef = value.value
        if ref.frame_id != frame.frame_id:
            raise TypeMismatch(
                f"Block reference to '{ref.label}' was produced by another frame ({ref.function})",
                location=instruction.location,
                rule="exec",
            )
        return ref.index

    def _resolve(self, operand: Operand, frame: Frame, instruction: Instruction) -> Value:
        if isinstance(operand, Variable):
            value = frame.bindings.get(operand.name)
            if value is None:
                raise UnknownVariable(
                    f"Undefined variable '${operand.name}' in {frame.name}",
                    location=instruction.location,
                    rule="var",
                )
            return value
        if isinstance(operand, Literal):
            return operand.value
        if isinstance(operand, LabelRef):
            return Value(TYPE_BLOCK, BlockRef(operand.name, operand.index, frame.name, frame.frame_id))
        raise MachinaRuntimeError(f"Unsupported operand {operand!r}", location=instruction.location, rule="internal")

    def _lookup(self, program: Program, name: str, location: Optional[SourceLocation]) -> Function:
        function = program.get(name)
        if function is None:
            raise UnknownFunction(f"Unknown function '{name}'", location=location, rule="call")
        return function

    def _check_arity(self, function: Function, supplied: int, location: Optional[SourceLocation]) -> None:
        if supplied != len(function.params):
            raise ArityMismatch(
                f"Function {function.name} expects {len(function.params)} arguments but received {supplied}",
                location=location,
                rule=function.name,
            )

    def _push_frame(
        self,
        function: Function,
        args: List[Value],
        *,
        return_dest: Optional[str],
        call_location: Optional[SourceLocation],
    ) -> Frame:
        if len(self.call_stack) >= self.max_depth:
            raise StackOverflow(
                f"Call depth exceeded {self.max_depth} frames calling {function.name}",
                location=call_location,
                rule="call",
            )
        frame = self._new_frame(function, call_location)
        frame.bindings.update(zip(function.params, args))
        frame.return_dest = return_dest
        self.call_stack.append(frame)
        return frame

    def _new_frame(self, function: Function, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(function=function, frame_id=frame_id, call_location=call_location)

    def _emit_event(self, event: str, *args: Any) -> None:
        try:
            self.hooks.emit(event, *args)
        except MachinaRuntimeError:
            raise
        except Exception as exc:
            loc = None
            if self.logger.entries:
                loc = self.logger.entries[-1].source_location
            raise MachinaRuntimeError(
                f"Hook for '{event}' failed: {exc}",
                location=loc,
                rule="EXT",
            ) from exc

    def _log_step(self, frame: Frame, instruction: Instruction) -> None:
        entry = self.logger.record(frame=frame, location=instruction.location)
        if self.max_steps is not None and entry.step_index - self.run_start_step >= self.max_steps:
            raise StepBudgetExceeded(
                f"Step budget of {self.max_steps} instructions exhausted",
                location=instruction.location,
                rule="STEPS",
            )
        # Run host step rules (every N steps) after recording.
        try:
            self.hooks.after_step(
                self,
                StepContext(
                    step_index=entry.step_index,
                    rule=instruction.__class__.__name__,
                    location=instruction.location,
                    function=frame.name,
                ),
            )
        except MachinaRuntimeError:
            raise
        except Exception as exc:
            raise MachinaRuntimeError(
                f"Step rule failed: {exc}",
                location=instruction.location,
                rule="EXT",
            ) from exc


@dataclass
class TracebackFrame:
    name: str
    instruction_index: int
    instruction: Optional[str]
    location: Optional[SourceLocation]
    state: str
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_entry_for_frame(frame.frame_id)
            instructions = frame.function.instructions
            current = instructions[frame.ip] if frame.ip < len(instructions) else None
            location = current.location if current is not None else frame.call_location
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    instruction_index=frame.ip,
                    instruction=format_instruction(current) if current is not None else None,
                    location=location,
                    state=frame.state,
                    state_entry=entry,
                )
            )
        return frames

    def format_text(self, error: MachinaRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            if frame.location:
                lines.append(
                    f"  File \"{frame.location.file}\", line {frame.location.line}, "
                    f"in {frame.name} [instruction {frame.instruction_index}]"
                )
                if frame.location.statement:
                    lines.append(f"    {frame.location.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name} [instruction {frame.instruction_index}]")
            if frame.state_entry:
                lines.append(f"    State log index: {frame.state_entry.step_index}")
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"${k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        for failure in error.hook_failures:
            lines.append(f"  on_error hook failed: {failure.__class__.__name__}: {failure}")
        return "\n".join(lines)

    def to_json(self, error: MachinaRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {
                "frame_index": index,
                "name": frame.name,
                "instruction_index": frame.instruction_index,
                "instruction": frame.instruction,
                "state": frame.state,
            }
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
                "hook_failures": [f"{failure.__class__.__name__}: {failure}" for failure in error.hook_failures],
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
