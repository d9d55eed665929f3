"""Tests for project detection and build execution."""

import json
import sys
import time
from pathlib import Path

import pytest

from conftest import FakeDockerManager
from reactor.hotreload.build import BuildTrigger, ProjectDetector
from reactor.hotreload.enums import ChangeState
from reactor.hotreload.errors import BuildError
from reactor.hotreload.models import (
    BuildOptions,
    BuildResult,
    ChangeEntry,
    ProjectBuildInfo,
    SettledChangeSet,
    WatchConfig,
)


def _changes(root: Path, *names: str) -> SettledChangeSet:
    return SettledChangeSet(
        entries={root / n: ChangeEntry(path=root / n, state=ChangeState.MODIFIED) for n in names}
    )


class TestDetection:
    def test_go_project(self, project: Path):
        info = BuildTrigger().detect_project_type(project)

        assert info.language == "go"
        assert info.confidence >= 0.8
        assert info.build_command[:2] == ["go", "build"]
        assert info.build_outputs == ["server"]
        assert "**/*.go" in info.watch_patterns

    def test_gin_framework(self, tmp_path: Path):
        (tmp_path / "go.mod").write_text("module app\n\nrequire github.com/gin-gonic/gin v1.9.0\n")
        assert BuildTrigger().detect_project_type(tmp_path).framework == "gin"

    def test_rust_project(self, tmp_path: Path):
        (tmp_path / "Cargo.toml").write_text("[package]\nname = 'x'\n")
        info = BuildTrigger().detect_project_type(tmp_path)
        assert info.language == "rust"
        assert info.build_command == ["cargo", "build"]

    def test_node_project_with_build_script(self, tmp_path: Path):
        manifest = {"scripts": {"build": "vite build"}, "dependencies": {"react": "^18"}}
        (tmp_path / "package.json").write_text(json.dumps(manifest))

        info = BuildTrigger().detect_project_type(tmp_path)
        assert info.language == "nodejs"
        assert info.framework == "react"
        assert info.build_command == ["npm", "run", "build"]

    def test_next_wins_over_react(self, tmp_path: Path):
        manifest = {"dependencies": {"react": "^18", "next": "^14"}}
        (tmp_path / "package.json").write_text(json.dumps(manifest))
        info = BuildTrigger().detect_project_type(tmp_path)
        assert info.framework == "nextjs"
        assert info.build_command == []

    def test_invalid_package_json_still_detected(self, tmp_path: Path):
        (tmp_path / "package.json").write_text("{not json")
        assert BuildTrigger().detect_project_type(tmp_path).language == "nodejs"

    def test_python_project(self, tmp_path: Path):
        (tmp_path / "requirements.txt").write_text("Flask==3.0\n")
        info = BuildTrigger().detect_project_type(tmp_path)
        assert info.language == "python"
        assert info.framework == "flask"
        assert info.build_command[-2:] == ["-r", "requirements.txt"]

    def test_java_gradle_wrapper(self, tmp_path: Path):
        (tmp_path / "build.gradle").write_text("")
        (tmp_path / "gradlew").write_text("")
        info = BuildTrigger().detect_project_type(tmp_path)
        assert info.language == "java"
        assert info.build_command == ["./gradlew", "build"]

    def test_highest_confidence_wins(self, tmp_path: Path):
        (tmp_path / "requirements.txt").write_text("")
        (tmp_path / "package.json").write_text("{}")
        # node 0.90 beats python 0.85
        assert BuildTrigger().detect_project_type(tmp_path).language == "nodejs"

    def test_ties_favor_earlier_detector(self, tmp_path: Path):
        (tmp_path / "go.mod").write_text("module x\n")
        (tmp_path / "Cargo.toml").write_text("")
        assert BuildTrigger().detect_project_type(tmp_path).language == "go"

    def test_unknown_project(self, tmp_path: Path):
        info = BuildTrigger().detect_project_type(tmp_path)
        assert info.language == "unknown"
        assert info.build_command == []
        assert 0.0 <= info.confidence < 0.5

    def test_custom_detector(self, tmp_path: Path):
        class MakeDetector(ProjectDetector):
            language = "make"

            def detect(self, path: Path) -> ProjectBuildInfo | None:
                if (path / "Makefile").is_file():
                    return self._info("make", 0.5, build_command=["make"])
                return None

        (tmp_path / "Makefile").write_text("all:\n")
        trigger = BuildTrigger(detectors=[MakeDetector()])
        assert trigger.detect_project_type(tmp_path).build_command == ["make"]

    def test_get_build_command_with_language_override(self, tmp_path: Path):
        (tmp_path / "package.json").write_text(json.dumps({"scripts": {"build": "tsc"}}))
        (tmp_path / "requirements.txt").write_text("")
        trigger = BuildTrigger()

        assert trigger.get_build_command(tmp_path) == ["npm", "run", "build"]
        assert trigger.get_build_command(tmp_path, language="python")[:3] == ["python", "-m", "pip"]
        assert trigger.get_build_command(tmp_path, language="rust") == []


class TestShouldBuild:
    def test_matching_source_triggers(self, project: Path):
        trigger = BuildTrigger()
        info = trigger.detect_project_type(project)
        assert trigger.should_build(_changes(project, "main.go"), WatchConfig(), info, root=project)

    def test_non_source_does_not_trigger(self, project: Path):
        trigger = BuildTrigger()
        info = trigger.detect_project_type(project)
        assert not trigger.should_build(_changes(project, "README.md"), WatchConfig(), info, root=project)

    def test_disabled_build(self, project: Path):
        trigger = BuildTrigger()
        info = trigger.detect_project_type(project)
        config = WatchConfig(enable_build=False)
        assert not trigger.should_build(_changes(project, "main.go"), config, info, root=project)

    def test_exclude_wins(self, project: Path):
        trigger = BuildTrigger()
        info = trigger.detect_project_type(project)
        changes = _changes(project, "node_modules/dep/x.go")
        assert not trigger.should_build(changes, WatchConfig(), info, root=project)

    def test_explicit_build_patterns_override_detection(self, project: Path):
        trigger = BuildTrigger()
        info = trigger.detect_project_type(project)
        config = WatchConfig(build_patterns=["*.proto"])
        assert trigger.should_build(_changes(project, "api/v1.proto"), config, info, root=project)
        assert not trigger.should_build(_changes(project, "main.go"), config, info, root=project)


@pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX commands")
class TestExecuteBuild:
    async def test_success_captures_output(self, tmp_path: Path):
        result = await BuildTrigger().execute_build(tmp_path, ["sh", "-c", "echo built; echo warn >&2"])

        assert result.success
        assert result.exit_code == 0
        assert "built" in result.output
        assert "warn" in result.output
        assert result.working_dir == str(tmp_path)

    async def test_non_zero_exit_is_failure(self, tmp_path: Path):
        result = await BuildTrigger().execute_build(tmp_path, ["sh", "-c", "exit 3"])
        assert not result.success
        assert result.exit_code == 3
        assert "3" in result.error

    async def test_timeout_is_bounded(self, tmp_path: Path):
        started = time.monotonic()
        result = await BuildTrigger().execute_build(
            tmp_path, ["sleep", "5"], BuildOptions(timeout_seconds=1)
        )
        elapsed = time.monotonic() - started

        assert not result.success
        assert result.timed_out
        assert "timed out" in result.error
        assert elapsed < 3

    async def test_empty_command_succeeds(self, tmp_path: Path):
        result = await BuildTrigger().execute_build(tmp_path, [])
        assert result.success
        assert result.output == "No build command specified"

    async def test_missing_executable(self, tmp_path: Path):
        result = await BuildTrigger().execute_build(tmp_path, ["definitely-not-a-real-binary-xyz"])
        assert not result.success
        assert "Failed to start build" in result.error

    async def test_missing_working_dir(self, tmp_path: Path):
        result = await BuildTrigger().execute_build(tmp_path / "nope", ["true"])
        assert not result.success
        assert "does not exist" in result.error

    async def test_environment_is_passed(self, tmp_path: Path):
        result = await BuildTrigger().execute_build(
            tmp_path, ["sh", "-c", "echo $REACTOR_TEST_VAR"], BuildOptions(environment={"REACTOR_TEST_VAR": "hello"})
        )
        assert "hello" in result.output


class TestInContainerBuild:
    async def test_runs_through_docker_exec(self, tmp_path: Path):
        docker = FakeDockerManager()
        docker.exec_result = (0, "ok")
        options = BuildOptions(in_container=True, container_id="dev", container_workdir="/app")

        result = await BuildTrigger(docker).execute_build(tmp_path, ["go", "build", "."], options)

        assert result.success
        assert result.output == "ok"
        assert docker.execs == [("dev", ["go", "build", "."], "/app")]

    async def test_failure_exit_code(self, tmp_path: Path):
        docker = FakeDockerManager()
        docker.exec_result = (2, "compile error")
        options = BuildOptions(in_container=True, container_id="dev")

        result = await BuildTrigger(docker).execute_build(tmp_path, ["make"], options)
        assert not result.success
        assert result.exit_code == 2

    async def test_timeout(self, tmp_path: Path):
        docker = FakeDockerManager()
        docker.exec_delay = 5
        options = BuildOptions(in_container=True, container_id="dev", timeout_seconds=0.2)

        result = await BuildTrigger(docker).execute_build(tmp_path, ["make"], options)
        assert result.timed_out

    async def test_requires_container(self, tmp_path: Path):
        result = await BuildTrigger().execute_build(tmp_path, ["make"], BuildOptions(in_container=True))
        assert not result.success


class TestValidateBuildResult:
    def test_success_passes(self):
        BuildTrigger.validate_build_result(BuildResult(success=True, exit_code=0))

    def test_failure_raises(self):
        with pytest.raises(BuildError) as exc:
            BuildTrigger.validate_build_result(BuildResult(success=False, exit_code=1, error="boom", output="log"))
        assert exc.value.exit_code == 1
        assert exc.value.output == "log"

    def test_missing_raises(self):
        with pytest.raises(BuildError):
            BuildTrigger.validate_build_result(None)
