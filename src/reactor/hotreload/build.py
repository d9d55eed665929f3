"""Project detection and build execution.

Flow:
1. Detect the project type once per session (ordered marker-file detectors)
2. Decide per settled change set whether a rebuild is needed
3. Run the build on the host or inside the target container, bounded by
   a timeout
"""

import asyncio
import contextlib
import json
import logging
import os
import signal
import time
from abc import ABC, abstractmethod
from pathlib import Path

from reactor.docker import DockerError, DockerManager
from reactor.hotreload.errors import BuildError
from reactor.hotreload.models import (
    DEFAULT_IGNORE_PATTERNS,
    BuildOptions,
    BuildResult,
    ProjectBuildInfo,
    SettledChangeSet,
    WatchConfig,
)
from reactor.hotreload.patterns import is_included

logger = logging.getLogger(__name__)

UNKNOWN_CONFIDENCE = 0.1


def _read_text(path: Path) -> str:
    try:
        return path.read_text(errors="replace")
    except OSError:
        return ""


class ProjectDetector(ABC):
    """Recognizes one language ecosystem from its marker files."""

    language: str = ""

    @abstractmethod
    def detect(self, path: Path) -> ProjectBuildInfo | None:
        """Return build info if the project matches, else None.

        The returned info carries a confidence score in [0, 1].
        """
        ...

    def _info(self, framework: str, confidence: float, **kwargs) -> ProjectBuildInfo:
        kwargs.setdefault("ignore_patterns", list(DEFAULT_IGNORE_PATTERNS))
        return ProjectBuildInfo(
            language=self.language,
            framework=framework,
            confidence=confidence,
            **kwargs,
        )


class GoDetector(ProjectDetector):
    language = "go"

    def detect(self, path: Path) -> ProjectBuildInfo | None:
        go_mod = path / "go.mod"
        if not go_mod.is_file():
            return None

        content = _read_text(go_mod)
        module = ""
        for line in content.splitlines():
            line = line.strip()
            if line.startswith("module "):
                module = line.split(None, 1)[1].strip()
                break
        # `go build .` names the binary after the last module path element
        binary = module.rsplit("/", 1)[-1] if module else path.name

        framework, start = "go", ["go", "run", "."]
        if "github.com/gin-gonic/gin" in content:
            framework = "gin"
        elif "github.com/gorilla/mux" in content:
            framework = "gorilla"

        return self._info(
            framework,
            0.95,
            build_command=["go", "build", "."],
            test_command=["go", "test", "./..."],
            start_command=start,
            watch_patterns=["**/*.go", "go.mod", "go.sum"],
            build_outputs=[binary],
            supports_hot_reload=True,
        )


class RustDetector(ProjectDetector):
    language = "rust"

    def detect(self, path: Path) -> ProjectBuildInfo | None:
        if not (path / "Cargo.toml").is_file():
            return None
        return self._info(
            "cargo",
            0.95,
            build_command=["cargo", "build"],
            test_command=["cargo", "test"],
            start_command=["cargo", "run"],
            watch_patterns=["**/*.rs", "Cargo.toml", "Cargo.lock"],
            build_outputs=["target/debug"],
            supports_hot_reload=False,
        )


class NodeDetector(ProjectDetector):
    language = "nodejs"

    def detect(self, path: Path) -> ProjectBuildInfo | None:
        package_json = path / "package.json"
        if not package_json.is_file():
            return None

        try:
            manifest = json.loads(_read_text(package_json) or "{}")
        except json.JSONDecodeError:
            logger.warning(f"Invalid package.json in {path}")
            manifest = {}

        deps: dict = {}
        for key in ("dependencies", "devDependencies"):
            if isinstance(manifest.get(key), dict):
                deps.update(manifest[key])
        scripts = manifest.get("scripts") if isinstance(manifest.get("scripts"), dict) else {}

        # next and react both pull in react, so check next first
        framework, start = "node", ["npm", "start"]
        if "next" in deps:
            framework, start = "nextjs", ["npm", "run", "dev"]
        elif "react" in deps:
            framework, start = "react", ["npm", "run", "dev"]
        elif "vue" in deps:
            framework, start = "vue", ["npm", "run", "serve"]
        elif "express" in deps:
            framework, start = "express", ["npm", "run", "dev"]

        return self._info(
            framework,
            0.90,
            build_command=["npm", "run", "build"] if "build" in scripts else [],
            test_command=["npm", "test"],
            start_command=start,
            watch_patterns=["**/*.{js,ts,jsx,tsx,mjs}", "package.json"],
            build_outputs=["dist", "build"],
            supports_hot_reload=True,
        )


class PythonDetector(ProjectDetector):
    language = "python"

    def detect(self, path: Path) -> ProjectBuildInfo | None:
        requirements = path / "requirements.txt"
        pyproject = path / "pyproject.toml"
        pipfile = path / "Pipfile"
        if not (requirements.is_file() or pyproject.is_file() or pipfile.is_file()):
            return None

        if requirements.is_file():
            build = ["python", "-m", "pip", "install", "-r", "requirements.txt"]
        elif pyproject.is_file():
            build = ["python", "-m", "pip", "install", "-e", "."]
        else:
            build = ["pipenv", "install"]

        manifests = (_read_text(requirements) + _read_text(pyproject) + _read_text(pipfile)).lower()
        framework, start = "python", []
        if "django" in manifests:
            framework, start = "django", ["python", "manage.py", "runserver"]
        elif "flask" in manifests:
            framework, start = "flask", ["python", "app.py"]
        elif "fastapi" in manifests:
            framework, start = "fastapi", ["uvicorn", "main:app", "--reload"]

        return self._info(
            framework,
            0.85,
            build_command=build,
            test_command=["python", "-m", "pytest"],
            start_command=start,
            # Source edits are picked up by the interpreter; only manifests need a rebuild
            watch_patterns=["requirements.txt", "pyproject.toml", "Pipfile"],
            supports_hot_reload=True,
        )


class JavaDetector(ProjectDetector):
    language = "java"

    def detect(self, path: Path) -> ProjectBuildInfo | None:
        pom = path / "pom.xml"
        if pom.is_file():
            spring = "spring-boot" in _read_text(pom)
            return self._info(
                "springboot" if spring else "maven",
                0.90,
                build_command=["mvn", "compile"],
                test_command=["mvn", "test"],
                start_command=["mvn", "spring-boot:run"] if spring else [],
                watch_patterns=["**/*.java", "pom.xml"],
                build_outputs=["target/classes"],
                supports_hot_reload=spring,
            )

        if (path / "build.gradle").is_file() or (path / "build.gradle.kts").is_file():
            gradle = "./gradlew" if (path / "gradlew").is_file() else "gradle"
            return self._info(
                "gradle",
                0.90,
                build_command=[gradle, "build"],
                test_command=[gradle, "test"],
                watch_patterns=["**/*.java", "**/*.kt", "build.gradle", "build.gradle.kts"],
                build_outputs=["build/libs"],
                supports_hot_reload=False,
            )

        return None


def default_detectors() -> list[ProjectDetector]:
    """Detectors in priority order; earlier wins confidence ties."""
    return [GoDetector(), RustDetector(), NodeDetector(), PythonDetector(), JavaDetector()]


def unknown_project() -> ProjectBuildInfo:
    return ProjectBuildInfo(
        language="unknown",
        framework="generic",
        ignore_patterns=list(DEFAULT_IGNORE_PATTERNS),
        confidence=UNKNOWN_CONFIDENCE,
    )


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill a build's process group and wait for it to exit."""
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    await process.wait()


class BuildTrigger:
    """Detects project types and runs builds.

    Builds run on the host by default. With ``BuildOptions.in_container``
    they run through the DockerManager's exec in the target container.
    """

    def __init__(
        self,
        docker: DockerManager | None = None,
        detectors: list[ProjectDetector] | None = None,
    ):
        self.docker = docker
        self.detectors = detectors if detectors is not None else default_detectors()

    def detect_project_type(self, path: str | Path) -> ProjectBuildInfo:
        """Run every detector and keep the most confident match."""
        path = Path(path)
        best: ProjectBuildInfo | None = None

        for detector in self.detectors:
            try:
                info = detector.detect(path)
            except OSError as e:
                logger.warning(f"{type(detector).__name__} failed on {path}: {e}")
                continue
            if info is not None and (best is None or info.confidence > best.confidence):
                best = info

        if best is None:
            logger.info(f"No project markers found in {path}")
            return unknown_project()

        logger.info(f"Detected {best.language} project ({best.framework}) with confidence {best.confidence:.2f}")
        return best

    def get_build_command(self, path: str | Path, language: str | None = None) -> list[str]:
        """Get the build command, optionally forcing a language."""
        if language:
            for detector in self.detectors:
                if detector.language != language:
                    continue
                info = detector.detect(Path(path))
                if info is not None:
                    return info.build_command
            logger.warning(f"No {language} markers in {path}")
            return []
        return self.detect_project_type(path).build_command

    def should_build(
        self,
        change_set: SettledChangeSet,
        config: WatchConfig,
        info: ProjectBuildInfo | None = None,
        root: Path | None = None,
    ) -> bool:
        """Check if any changed path matches a build-trigger pattern.

        Paths are matched relative to ``root`` when given.
        """
        if not config.enable_build:
            return False

        patterns = config.build_patterns
        if patterns is None:
            patterns = info.watch_patterns if info else []
        if not patterns:
            return False

        for entry in change_set.entries.values():
            if entry.is_dir:
                continue
            rel = self._relative(entry.path, root)
            if is_included(rel, patterns, config.exclude_patterns):
                return True
        return False

    @staticmethod
    def _relative(path: Path, root: Path | None) -> str:
        if root is not None:
            with contextlib.suppress(ValueError):
                return path.relative_to(root).as_posix()
        return path.as_posix()

    async def execute_build(
        self,
        path: str | Path,
        command: list[str],
        options: BuildOptions | None = None,
    ) -> BuildResult:
        """Run a build command with a bounded timeout.

        Never raises for build failures: timeouts, missing executables and
        non-zero exits all come back as a failed BuildResult. Cancellation
        kills the child process, waits for it, and propagates.
        """
        options = options or BuildOptions()
        working_dir = Path(options.working_dir or path)

        if not command:
            logger.warning("No build command specified, returning success")
            return BuildResult(
                success=True,
                command=[],
                output="No build command specified",
                exit_code=0,
                working_dir=str(working_dir),
            )

        if options.in_container:
            return await self._execute_in_container(command, options)

        if not working_dir.is_dir():
            return BuildResult(
                success=False,
                command=command,
                error=f"Working directory does not exist: {working_dir}",
                working_dir=str(working_dir),
            )

        env = None
        if options.environment:
            env = os.environ.copy()
            env.update(options.environment)

        logger.info(f"Executing build: {' '.join(command)} in {working_dir}")
        started = time.monotonic()
        process: asyncio.subprocess.Process | None = None

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=working_dir,
                env=env,
                stdout=asyncio.subprocess.PIPE if options.capture_output else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.STDOUT if options.capture_output else asyncio.subprocess.DEVNULL,
                start_new_session=os.name == "posix",
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=options.timeout_seconds)

        except TimeoutError:
            if process:
                await _terminate(process)
            logger.error(f"Build timed out after {options.timeout_seconds} seconds")
            return BuildResult(
                success=False,
                command=command,
                exit_code=process.returncode if process else None,
                duration_seconds=time.monotonic() - started,
                working_dir=str(working_dir),
                error=f"Build timed out after {options.timeout_seconds} seconds",
                timed_out=True,
            )

        except asyncio.CancelledError:
            if process:
                await _terminate(process)
            raise

        except OSError as e:
            logger.error(f"Failed to start build: {e}")
            return BuildResult(
                success=False,
                command=command,
                duration_seconds=time.monotonic() - started,
                working_dir=str(working_dir),
                error=f"Failed to start build: {e}",
            )

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        duration = time.monotonic() - started
        success = process.returncode == 0

        if success:
            logger.info(f"Build succeeded in {duration:.2f}s")
        else:
            logger.warning(f"Build failed with exit code {process.returncode}")

        return BuildResult(
            success=success,
            command=command,
            output=output,
            exit_code=process.returncode,
            duration_seconds=duration,
            working_dir=str(working_dir),
            error=None if success else f"Build exited with code {process.returncode}",
        )

    async def _execute_in_container(self, command: list[str], options: BuildOptions) -> BuildResult:
        workdir = options.container_workdir
        if self.docker is None or not options.container_id:
            return BuildResult(
                success=False,
                command=command,
                working_dir=workdir,
                error="In-container build requires a docker manager and container ID",
            )

        logger.info(f"Executing build in {options.container_id}: {' '.join(command)}")
        started = time.monotonic()

        try:
            exit_code, output = await asyncio.wait_for(
                self.docker.exec_in_container(
                    options.container_id,
                    command,
                    workdir=workdir,
                    environment=options.environment,
                ),
                timeout=options.timeout_seconds,
            )
        except TimeoutError:
            logger.error(f"Container build timed out after {options.timeout_seconds} seconds")
            return BuildResult(
                success=False,
                command=command,
                duration_seconds=time.monotonic() - started,
                working_dir=workdir,
                error=f"Build timed out after {options.timeout_seconds} seconds",
                timed_out=True,
            )
        except DockerError as e:
            return BuildResult(
                success=False,
                command=command,
                duration_seconds=time.monotonic() - started,
                working_dir=workdir,
                error=str(e),
            )

        success = exit_code == 0
        return BuildResult(
            success=success,
            command=command,
            output=output,
            exit_code=exit_code,
            duration_seconds=time.monotonic() - started,
            working_dir=workdir,
            error=None if success else f"Build exited with code {exit_code}",
        )

    @staticmethod
    def validate_build_result(result: BuildResult | None) -> None:
        """Raise BuildError unless the result is a success."""
        if result is None:
            raise BuildError("Build result is missing")
        if not result.success:
            raise BuildError(result.error or "Build failed", exit_code=result.exit_code, output=result.output)
        if result.exit_code not in (0, None):
            raise BuildError(f"Build exited with code {result.exit_code}", exit_code=result.exit_code)
