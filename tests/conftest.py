"""Shared fixtures."""

import pytest

from imgpipe.context import ExecutionContext

from helpers import FakeCommandRunner, StubHandlers


@pytest.fixture
def fake_runner():
    return FakeCommandRunner()


@pytest.fixture
def stub_handlers():
    return StubHandlers()


@pytest.fixture
def context(tmp_path):
    source = tmp_path / "report.pdf"
    source.write_bytes(b"%PDF-1.4\n")
    return ExecutionContext(
        workflow_input=str(source),
        output_dir=str(tmp_path / "out"),
        temp_dir=str(tmp_path / "tmp"),
        workflow_name="test-workflow",
    )
