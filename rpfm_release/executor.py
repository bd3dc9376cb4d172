"""Sequential stage execution for a single run instance."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Union

from .cache import CacheManager
from .conditions import evaluate
from .errors import ConfigurationError
from .models import RunContext, RunInstance, RunResult, Stage, StageOutcome, TriggerEvent

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127
OUTPUT_TAIL = 4000
PIPELINE_DIR = ".pipeline"

SHELLS = ("bash", "sh", "pwsh", "powershell", "cmd", "python")


def shell_argv(shell: str, command: str) -> List[str]:
    if shell == "bash":
        return ["bash", "--noprofile", "--norc", "-eo", "pipefail", "-c", command]
    if shell == "sh":
        return ["sh", "-e", "-c", command]
    if shell in ("pwsh", "powershell"):
        return [shell, "-NoProfile", "-NonInteractive", "-Command", command]
    if shell == "cmd":
        return ["cmd", "/D", "/C", command]
    if shell == "python":
        return [sys.executable, "-c", command]
    raise ConfigurationError(f"Unsupported shell '{shell}'. Expected one of: {', '.join(SHELLS)}.")


def default_shell(os_name: str) -> str:
    return "pwsh" if os_name.lower().startswith("windows") else "bash"


@dataclass(slots=True)
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False


class CommandRunner(Protocol):
    def run(
        self,
        command: str,
        *,
        shell: str,
        cwd: Path,
        env: Mapping[str, str],
        timeout: Optional[float],
    ) -> CommandResult:  # pragma: no cover - interface
        ...


def _decode(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class SubprocessRunner:
    """Runs each command as a child process of the declared shell."""

    def run(
        self,
        command: str,
        *,
        shell: str,
        cwd: Path,
        env: Mapping[str, str],
        timeout: Optional[float],
    ) -> CommandResult:
        argv = shell_argv(shell, command)
        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd),
                env=dict(env),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_decode(exc.stdout),
                stderr=_decode(exc.stderr) + f"\nCommand timed out after {timeout}s.",
                timed_out=True,
            )
        except OSError as exc:
            return CommandResult(exit_code=NOT_FOUND_EXIT_CODE, stderr=f"Unable to start {argv[0]}: {exc}")
        return CommandResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


def _read_env_file(path: Path) -> Dict[str, str]:
    values: Dict[str, str] = {}
    if not path.exists():
        return values
    for line in path.read_text(encoding="utf-8").splitlines():
        raw = line.strip()
        if not raw or raw.startswith("#") or "=" not in raw:
            continue
        key, value = raw.split("=", 1)
        if key.strip():
            values[key.strip()] = value
    path.write_text("", encoding="utf-8")
    return values


def _ignore_pipeline_dir(root: Path) -> Callable[[str, List[str]], List[str]]:
    # Run directories live under the checkout; never copy them into themselves.
    def _ignore(directory: str, names: List[str]) -> List[str]:
        return [PIPELINE_DIR] if Path(directory) == root and PIPELINE_DIR in names else []

    return _ignore


class StageExecutor:
    """Runs the stages of one RunInstance in declared order.

    A false condition skips its stage; the first failing command stops the
    instance and every later stage is recorded as ``not_run``.

    With ``isolate`` (the default) each instance works in its own copy of the
    checkout at ``.pipeline/runs/<slug>/work``, so files one instance writes
    are never seen by another. Without it every instance shares the checkout.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        *,
        workspace_root: Optional[Union[str, Path]] = None,
        cache: Optional[CacheManager] = None,
        timeout: Optional[float] = None,
        base_env: Optional[Mapping[str, str]] = None,
        isolate: bool = True,
    ) -> None:
        self.runner = runner or SubprocessRunner()
        self.workspace_root = Path(workspace_root) if workspace_root else Path.cwd()
        self.cache = cache
        self.timeout = timeout
        self.base_env = dict(os.environ if base_env is None else base_env)
        self.isolate = isolate

    def run(self, instance: RunInstance, event: Optional[TriggerEvent] = None) -> RunResult:
        run_dir = self._prepare_run_dir(instance)
        workdir = self._prepare_workdir(run_dir) if self.isolate else self.workspace_root
        env_file = run_dir / "env"
        env = self._instance_env(instance, run_dir, env_file)
        env["PIPELINE_WORKSPACE"] = str(workdir)

        cache_key: Optional[str] = None
        cache_path: Optional[Path] = None
        cache_hit = False
        if instance.cache and self.cache:
            cache_key = instance.cache.render_key(instance.matrix)
            cache_path = self._resolve(instance.cache.path, workdir)
            entry = self.cache.lookup(cache_key)
            if entry.present:
                cache_hit = self.cache.restore(entry, cache_path)

        if event is not None:
            context = RunContext.for_instance(instance, event, cache_hit=cache_hit)
        else:
            context = RunContext(
                os=instance.os,
                toolchain_version=instance.toolchain_version,
                cache_hit=cache_hit,
                matrix=dict(instance.matrix),
            )

        result = RunResult(instance=instance.label, status="success", cache_hit=cache_hit, workdir=str(workdir))
        for stage in instance.stages:
            if result.status == "failed":
                result.stages.append(StageOutcome(name=stage.name, status="not_run"))
                continue
            if not evaluate(stage.condition, context):
                logger.info(
                    "[%s] Skipping stage '%s' (%s is false)",
                    instance.label,
                    stage.name,
                    stage.condition_source or "condition",
                )
                result.stages.append(
                    StageOutcome(name=stage.name, status="skipped", condition=stage.condition_source)
                )
                continue
            outcome = self._run_stage(stage, instance, env, env_file, workdir)
            result.stages.append(outcome)
            if outcome.status == "failed":
                result.status = "failed"
                result.failing_stage = stage.name
                result.exit_code = outcome.exit_code
                logger.warning(
                    "[%s] Stage '%s' failed with exit code %s", instance.label, stage.name, outcome.exit_code
                )

        if result.succeeded:
            result.exit_code = 0
            if cache_key and cache_path is not None and self.cache and not cache_hit:
                self.cache.store(cache_key, cache_path)
        return result

    def _run_stage(
        self, stage: Stage, instance: RunInstance, env: Dict[str, str], env_file: Path, workdir: Path
    ) -> StageOutcome:
        shell = stage.shell or default_shell(instance.os)
        logger.info("[%s] Running stage '%s' (%s)", instance.label, stage.name, shell)
        started = time.monotonic()
        output: List[str] = []
        for command in stage.commands:
            completed = self.runner.run(
                command,
                shell=shell,
                cwd=workdir,
                env=env,
                timeout=self.timeout,
            )
            output.extend(part for part in (completed.stdout, completed.stderr) if part)
            logger.debug("[%s] %s -> %s", instance.label, command, completed.exit_code)
            env.update(_read_env_file(env_file))
            if completed.exit_code != 0:
                return StageOutcome(
                    name=stage.name,
                    status="failed",
                    exit_code=completed.exit_code,
                    output="".join(output)[-OUTPUT_TAIL:],
                    duration=time.monotonic() - started,
                )
        return StageOutcome(
            name=stage.name,
            status="succeeded",
            exit_code=0,
            output="".join(output)[-OUTPUT_TAIL:],
            duration=time.monotonic() - started,
        )

    def _prepare_run_dir(self, instance: RunInstance) -> Path:
        run_dir = self.workspace_root / PIPELINE_DIR / "runs" / instance.slug
        if run_dir.exists():
            shutil.rmtree(run_dir)
        run_dir.mkdir(parents=True)
        return run_dir

    def _instance_env(self, instance: RunInstance, run_dir: Path, env_file: Path) -> Dict[str, str]:
        env = dict(self.base_env)
        env.update(instance.env)
        for name, value in instance.matrix.items():
            env[f"MATRIX_{name.upper()}"] = value
        env["PIPELINE_RUN_DIR"] = str(run_dir)
        env["PIPELINE_ENV"] = str(env_file)
        env_file.write_text("", encoding="utf-8")
        return env

    def _prepare_workdir(self, run_dir: Path) -> Path:
        workdir = run_dir / "work"
        shutil.copytree(
            self.workspace_root,
            workdir,
            symlinks=True,
            ignore=_ignore_pipeline_dir(self.workspace_root),
        )
        return workdir

    def _resolve(self, path: str, workdir: Path) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else workdir / candidate
