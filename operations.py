from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from values import (
    TYPE_BLOCK,
    TYPE_BOOL,
    TYPE_INT,
    TYPE_STR,
    DivisionByZero,
    MachinaRuntimeError,
    NoMatchingCase,
    TypeMismatch,
    Value,
    make_bool,
    make_int,
    truthy,
)

if TYPE_CHECKING:
    from parser import SourceLocation


OperationImpl = Callable[[List[Value], Optional["SourceLocation"]], Value]


@dataclass
class Operation:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: OperationImpl
    # Operands alternate (condition, label); labels sit at odd positions.
    pairs: bool = False

    def arity_error(self, supplied: int) -> Optional[str]:
        if self.pairs:
            if supplied < 2 or supplied % 2 != 0:
                return f"{self.name} expects (condition, label) pairs"
            return None
        if supplied < self.min_args or (self.max_args is not None and supplied > self.max_args):
            if self.min_args == self.max_args:
                return f"{self.name} expects {self.min_args} operands but got {supplied}"
            return f"{self.name} expects at least {self.min_args} operands"
        return None

    def is_label_position(self, position: int) -> bool:
        return self.pairs and position % 2 == 1


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def _trunc_mod(a: int, b: int) -> int:
    return a - b * _trunc_div(a, b)


class Operations:
    def __init__(self) -> None:
        self.table: Dict[str, Operation] = {}
        self._register_int_only("add", 2, lambda a, b: a + b)
        self._register_int_only("sub", 2, lambda a, b: a - b)
        self._register_int_only("mul", 2, lambda a, b: a * b)
        self._register_custom("div", 2, 2, self._div)
        self._register_custom("mod", 2, 2, self._mod)
        self._register_compare("lt", lambda a, b: a < b)
        self._register_compare("lte", lambda a, b: a <= b)
        self._register_compare("gt", lambda a, b: a > b)
        self._register_compare("gte", lambda a, b: a >= b)
        self._register_custom("eq", 2, 2, self._eq)
        self._register_custom("neq", 2, 2, self._neq)
        self._register_logic("and", 2, lambda a, b: a and b)
        self._register_logic("or", 2, lambda a, b: a or b)
        self._register_logic("xor", 2, lambda a, b: a != b)
        self._register_logic("not", 1, lambda a: not a)
        self._register_custom("mov", 1, 1, self._mov)
        # Same construct, two spellings.
        for name in ("case", "switch"):
            self.table[name] = Operation(name=name, min_args=2, max_args=None, impl=self._case, pairs=True)

    def _register_int_only(self, name: str, arity: int, func: Callable[..., int]) -> None:
        def impl(args: List[Value], location: Optional["SourceLocation"]) -> Value:
            ints = [self._expect_int(arg, name, location) for arg in args]
            return make_int(func(*ints))

        self.table[name] = Operation(name=name, min_args=arity, max_args=arity, impl=impl)

    def _register_compare(self, name: str, func: Callable[[int, int], bool]) -> None:
        def impl(args: List[Value], location: Optional["SourceLocation"]) -> Value:
            a, b = (self._expect_int(arg, name, location) for arg in args)
            return make_bool(func(a, b))

        self.table[name] = Operation(name=name, min_args=2, max_args=2, impl=impl)

    def _register_logic(self, name: str, arity: int, func: Callable[..., bool]) -> None:
        def impl(args: List[Value], location: Optional["SourceLocation"]) -> Value:
            flags = [self._expect_condition(arg, name, location) for arg in args]
            return make_bool(func(*flags))

        self.table[name] = Operation(name=name, min_args=arity, max_args=arity, impl=impl)

    def _register_custom(self, name: str, min_args: int, max_args: Optional[int], impl: OperationImpl) -> None:
        self.table[name] = Operation(name=name, min_args=min_args, max_args=max_args, impl=impl)

    def has(self, name: str) -> bool:
        return name in self.table

    def get(self, name: str) -> Operation:
        return self.table[name]

    def invoke(self, name: str, args: List[Value], location: Optional["SourceLocation"] = None) -> Value:
        operation = self.table.get(name)
        if operation is None:
            raise MachinaRuntimeError(f"Unknown operation '{name}'", location=location, rule=name)
        problem = operation.arity_error(len(args))
        if problem is not None:
            raise MachinaRuntimeError(problem, location=location, rule=name)
        return operation.impl(args, location)

    # Helpers
    def _expect_int(self, value: Value, rule: str, location: Optional["SourceLocation"]) -> int:
        if value.type != TYPE_INT:
            raise TypeMismatch(f"{rule} expects integer arguments, got {value.type}", location=location, rule=rule)
        return value.value

    def _expect_condition(self, value: Value, rule: str, location: Optional["SourceLocation"]) -> bool:
        return truthy(value, rule, location)

    def _expect_comparable(self, args: List[Value], rule: str, location: Optional["SourceLocation"]) -> Tuple[object, object]:
        a, b = args
        numeric = (TYPE_INT, TYPE_BOOL)
        if a.type in numeric and b.type in numeric:
            return int(a.value), int(b.value)
        if a.type == TYPE_STR and b.type == TYPE_STR:
            return a.value, b.value
        raise TypeMismatch(f"{rule} cannot compare {a.type} with {b.type}", location=location, rule=rule)

    def _div(self, args: List[Value], location: Optional["SourceLocation"]) -> Value:
        a, b = (self._expect_int(arg, "div", location) for arg in args)
        if b == 0:
            raise DivisionByZero("Division by zero", location=location, rule="div")
        return make_int(_trunc_div(a, b))

    def _mod(self, args: List[Value], location: Optional["SourceLocation"]) -> Value:
        a, b = (self._expect_int(arg, "mod", location) for arg in args)
        if b == 0:
            raise DivisionByZero("Modulo by zero", location=location, rule="mod")
        return make_int(_trunc_mod(a, b))

    def _eq(self, args: List[Value], location: Optional["SourceLocation"]) -> Value:
        a, b = self._expect_comparable(args, "eq", location)
        return make_bool(a == b)

    def _neq(self, args: List[Value], location: Optional["SourceLocation"]) -> Value:
        a, b = self._expect_comparable(args, "neq", location)
        return make_bool(a != b)

    def _mov(self, args: List[Value], _: Optional["SourceLocation"]) -> Value:
        return args[0]

    def _case(self, args: List[Value], location: Optional["SourceLocation"]) -> Value:
        for condition, target in zip(args[0::2], args[1::2]):
            if target.type != TYPE_BLOCK:
                raise TypeMismatch(f"case expects a label, got {target.type}", location=location, rule="case")
            if self._expect_condition(condition, "case", location):
                return target
        labels = ", ".join(target.value.label for target in args[1::2])
        raise NoMatchingCase(f"No case condition matched (labels: {labels})", location=location, rule="case")


OPERATIONS = Operations()
