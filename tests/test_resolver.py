"""
Tests for label resolution
"""

import pytest

from lexer import ParseError
from parser import Jump, JumpIfTrue, LabelRef
from resolver import ResolutionError, load_program


class TestResolution:
    def test_labels_are_stripped_and_indexed(self):
        program = load_program("proc main\nA:\n    out 1\nB:\n    jmp A\nC:\nend\n")
        main = program.functions["main"]
        assert main.labels == {"A": 0, "B": 1, "C": 2}
        assert len(main.instructions) == 3

    def test_jump_targets_are_indices(self):
        program = load_program("proc main\n    jmpt 1 END\n    jmp START\nSTART:\n    out 1\nEND:\n")
        first, second = program.functions["main"].instructions[:2]
        assert isinstance(first, JumpIfTrue) and first.target == LabelRef("END", 3)
        assert isinstance(second, Jump) and second.target == LabelRef("START", 2)

    def test_case_labels_resolved(self):
        program = load_program("proc main\n    $b = case 1 X 0 Y\nY:\n    ret 0\nX:\n    ret 1\n")
        assign = program.functions["main"].instructions[0]
        assert assign.args[1] == LabelRef("X", 2)
        assert assign.args[3] == LabelRef("Y", 1)

    def test_labels_are_scoped_per_function(self):
        source = "proc a\nSHARED:\n    ret 1\nproc b\nSHARED:\n    ret 2\n"
        program = load_program(source)
        assert program.functions["a"].labels == {"SHARED": 0}
        assert program.functions["b"].labels == {"SHARED": 0}

    def test_forward_call_is_not_a_load_error(self):
        program = load_program("proc main\n    call later\nproc later\n    ret\n")
        assert set(program.functions) == {"main", "later"}


class TestResolutionErrors:
    def test_undeclared_label(self):
        with pytest.raises(ResolutionError) as info:
            load_program("proc main\n    out 1\n    jmp NOWHERE\n", "prog.mc")
        assert info.value.line == 3
        assert "NOWHERE" in info.value.message

    def test_cross_function_jump_is_rejected(self):
        source = "proc a\nTARGET:\n    ret\nproc b\n    jmp TARGET\n"
        with pytest.raises(ResolutionError):
            load_program(source)

    def test_undeclared_case_label(self):
        with pytest.raises(ResolutionError):
            load_program("proc main\n    $b = case 1 MISSING\n")

    def test_duplicate_label(self):
        with pytest.raises(ResolutionError) as info:
            load_program("proc main\nL:\n    out 1\nL:\n    out 2\n")
        assert info.value.line == 4

    def test_resolution_error_is_a_load_error(self):
        assert issubclass(ResolutionError, ParseError)
