"""Tests for build verification and diagnostic extraction."""

import json

import pytest

from pipewright import build as build_module
from pipewright.build import BuildVerifier, extract_diagnostics
from pipewright.contracts import CommandTimeoutError
from pipewright.process import CommandResult

TSC_OUTPUT = "\n".join(
    ["> app@1.0.0 build", "> tsc -p ."]
    + [f"src/file{i}.ts(3,5): error TS2322: Type 'string' is not assignable" for i in range(14)]
    + ["Found 14 errors."]
)


def test_extract_diagnostics_is_deterministic_and_bounded():
    first = extract_diagnostics(TSC_OUTPUT)
    second = extract_diagnostics(TSC_OUTPUT)
    assert first == second
    lines = first.splitlines()
    assert len(lines) == 10
    assert lines[0].startswith("src/file0.ts")
    assert lines[-1].startswith("src/file9.ts")


def test_extract_diagnostics_falls_back_to_tail():
    output = "\n".join(f"line {i}" for i in range(30))
    assert extract_diagnostics(output).splitlines() == [f"line {i}" for i in range(20, 30)]


class FakeRunner:
    def __init__(self, results=None, raises=None):
        self.calls = []
        self.results = results or {}
        self.raises = raises or {}

    async def __call__(self, args, cwd, timeout=None):
        command = " ".join(args)
        self.calls.append((command, timeout))
        if command in self.raises:
            raise self.raises[command]
        return self.results.get(command, CommandResult(command, 0, "", ""))


@pytest.fixture
def runner(monkeypatch):
    fake = FakeRunner()
    monkeypatch.setattr(build_module, "run_command", fake)
    return fake


@pytest.mark.asyncio
async def test_no_manifest_is_vacuous_success(tmp_path, runner):
    result = await BuildVerifier().verify(tmp_path)
    assert result.success
    assert runner.calls == []


@pytest.mark.asyncio
async def test_build_script_runs_after_install(tmp_path, runner):
    (tmp_path / "package.json").write_text(json.dumps({"scripts": {"build": "tsc"}}))
    result = await BuildVerifier().verify(tmp_path)
    assert result.success
    assert runner.calls == [("npm install", 180.0), ("npm run build", 120.0)]


@pytest.mark.asyncio
async def test_typed_project_without_build_script_is_type_checked(tmp_path, runner):
    (tmp_path / "package.json").write_text(
        json.dumps({"devDependencies": {"typescript": "^5.4.0"}})
    )
    runner.results["npx tsc --noEmit"] = CommandResult(
        "npx tsc --noEmit", 2, TSC_OUTPUT, ""
    )
    result = await BuildVerifier().verify(tmp_path)
    assert not result.success
    assert result.phase == "typecheck"
    assert result.error == extract_diagnostics(TSC_OUTPUT)
    assert [c for c, _ in runner.calls] == ["npm install", "npx tsc --noEmit"]


@pytest.mark.asyncio
async def test_tsconfig_without_manifest_is_type_checked(tmp_path, runner):
    (tmp_path / "tsconfig.json").write_text("{}")
    result = await BuildVerifier().verify(tmp_path)
    assert result.success
    assert [c for c, _ in runner.calls] == ["npx tsc --noEmit"]


@pytest.mark.asyncio
async def test_install_failure_skips_build(tmp_path, runner):
    (tmp_path / "package.json").write_text(json.dumps({"scripts": {"build": "tsc"}}))
    runner.results["npm install"] = CommandResult(
        "npm install", 1, "", "npm ERR! code E404\nnpm ERR! 404 Not Found"
    )
    result = await BuildVerifier().verify(tmp_path)
    assert not result.success
    assert result.phase == "install"
    assert "E404" in result.error
    assert [c for c, _ in runner.calls] == ["npm install"]


@pytest.mark.asyncio
async def test_build_timeout_is_reported(tmp_path, runner):
    (tmp_path / "package.json").write_text(json.dumps({"scripts": {"build": "tsc"}}))
    runner.raises["npm run build"] = CommandTimeoutError("npm run build", 120)
    result = await BuildVerifier().verify(tmp_path)
    assert not result.success
    assert result.error == "npm run build timed out after 120s"
