"""
Pytest configuration and fixtures for the Machina tests.
"""

import os
import sys

import pytest

# The interpreter modules live at the repository root.
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

from interpreter import Interpreter  # noqa: E402


SAMPLES_DIR = os.path.join(ROOT, "samples")


@pytest.fixture(scope="session")
def samples_dir():
    return SAMPLES_DIR


@pytest.fixture
def read_sample():
    def _read(name):
        with open(os.path.join(SAMPLES_DIR, name), "r", encoding="utf-8") as handle:
            return handle.read()

    return _read


@pytest.fixture
def make_interpreter():
    """
    Build an interpreter whose output is collected in ``interpreter.outputs``.
    """

    def _make(source, **kwargs):
        outputs = []
        interpreter = Interpreter(source=source, output_sink=outputs.append, **kwargs)
        interpreter.outputs = outputs
        return interpreter

    return _make


@pytest.fixture
def run_source(make_interpreter):
    """Run ``main`` of the given source and return the list of outputs."""

    def _run(source, **kwargs):
        interpreter = make_interpreter(source, **kwargs)
        interpreter.run()
        return interpreter.outputs

    return _run
