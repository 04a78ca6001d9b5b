"""Scenario runner: named, sequential UI steps against one session.

Steps are plain callables receiving the :class:`~appiumkit.session.Session`
(sync or async), or built from the declarative helpers::

    from appiumkit import AppiumClient, Locator, UIAutomatorDriver
    from appiumkit.scenario import Scenario

    async def main():
        async with AppiumClient() as client:
            session = await client.sessions.reconcile(driver)
            login = Scenario(session, name="login", checkpoint="/tmp/login.json")
            login.enter("user", Locator.by_id("username"), "alice")
            login.tap("submit", Locator.by_id("login"), and_wait_for=Locator.by_id("home"))
            login.expect_text("greeting", "Welcome, alice")

            @login.step("battery")
            async def battery(s):
                return await s.numeric_value(Locator.by_id("battery"))

            result = await login.run()
            print(result.summary())

With a checkpoint file, a failed run can be repeated: steps that already
passed are skipped until the whole scenario succeeds.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .models import Locator

logger = logging.getLogger("appiumkit.scenario")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    status: str          # 'ok' | 'error' | 'skipped'
    duration_ms: int
    error: Optional[str] = None
    data: Optional[Any] = None


@dataclass
class ScenarioResult:
    scenario_name: str
    steps: List[StepResult] = field(default_factory=list)
    total_ms: int = 0

    @property
    def ok(self) -> bool:
        return all(s.status != 'error' for s in self.steps)

    @property
    def failed_step(self) -> Optional[StepResult]:
        return next((s for s in self.steps if s.status == 'error'), None)

    def summary(self) -> str:
        head = f"Scenario '{self.scenario_name}': {'PASSED' if self.ok else 'FAILED'} ({self.total_ms}ms)"
        lines = [head]
        marks = {'ok': '+', 'error': 'x', 'skipped': '-'}
        for s in self.steps:
            suffix = f": {s.error}" if s.error else ""
            lines.append(f"  [{marks.get(s.status, '?')}] {s.name} ({s.duration_ms}ms){suffix}")
        return '\n'.join(lines)


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------

class CheckpointStore:
    """JSON file remembering which steps of a scenario already passed."""

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    def _read(self) -> Dict[str, Any]:
        try:
            return json.loads(self._path.read_text())
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable checkpoint %s: %s", self._path, exc)
            return {}

    def save(self, scenario_name: str, completed_steps: List[str]) -> None:
        data = {"scenario": scenario_name, "completed": completed_steps, "ts": time.time()}
        self._path.write_text(json.dumps(data, indent=2))

    def load(self, scenario_name: str) -> List[str]:
        data = self._read()
        if data.get("scenario") == scenario_name:
            return list(data.get("completed", []))
        return []

    def clear(self, scenario_name: str) -> None:
        if self._read().get("scenario") == scenario_name:
            self._path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Scenario
# ---------------------------------------------------------------------------

class Scenario:
    """Sequential step executor bound to a single session.

    Args:
        session: The session every step runs against.
        name: Scenario name, also the checkpoint key.
        checkpoint: Optional path of a JSON checkpoint file.
        stop_on_error: Halt at the first failing step (default True).
    """

    def __init__(
        self,
        session: Any,
        name: str = "scenario",
        checkpoint: Optional[str] = None,
        stop_on_error: bool = True,
    ) -> None:
        self._session = session
        self.name = name
        self._steps: List[Dict[str, Any]] = []
        self._checkpoint = CheckpointStore(checkpoint) if checkpoint else None
        self.stop_on_error = stop_on_error

    def step(self, name: str) -> Callable:
        """Decorator registering a sync or async function as a named step."""
        def decorator(fn: Callable) -> Callable:
            self.add_step(name, fn)
            return fn
        return decorator

    def add_step(self, name: str, fn: Callable) -> "Scenario":
        if any(s["name"] == name for s in self._steps):
            raise ValueError(f"duplicate step name {name!r} in scenario {self.name!r}")
        self._steps.append({"name": name, "fn": fn})
        return self

    # -- declarative steps ------------------------------------------------

    def tap(
        self,
        name: str,
        locator: Locator,
        and_wait_for: Optional[Locator] = None,
        timeout: Optional[float] = None,
    ) -> "Scenario":
        async def _tap(s):
            await s.click(locator, timeout=timeout, and_wait_for=and_wait_for)
        return self.add_step(name, _tap)

    def enter(self, name: str, locator: Locator, text: str) -> "Scenario":
        async def _enter(s):
            await s.type(locator, text)
        return self.add_step(name, _enter)

    def expect_text(self, name: str, text: str, timeout: Optional[float] = None) -> "Scenario":
        async def _expect(s):
            if not await s.wait_until_contains(text, timeout=timeout):
                raise AssertionError(f"{text!r} did not appear on screen")
        return self.add_step(name, _expect)

    def expect_no_text(self, name: str, text: str, timeout: Optional[float] = None) -> "Scenario":
        async def _expect_gone(s):
            if not await s.wait_until_absent(text, timeout=timeout):
                raise AssertionError(f"{text!r} is still on screen")
        return self.add_step(name, _expect_gone)

    # -- execution ----------------------------------------------------------

    async def run(self) -> ScenarioResult:
        """Run every step in order, awaiting async ones.

        A failing step is recorded, not raised. Completed steps are
        checkpointed when a checkpoint path was given; the checkpoint is
        removed once the whole scenario passes.
        """
        result = ScenarioResult(scenario_name=self.name)
        completed: List[str] = self._checkpoint.load(self.name) if self._checkpoint else []
        t_start = time.monotonic()

        for step_def in self._steps:
            step_name: str = step_def["name"]
            fn: Callable = step_def["fn"]

            if step_name in completed:
                result.steps.append(StepResult(name=step_name, status='skipped', duration_ms=0))
                continue

            t0 = time.monotonic()
            try:
                data = fn(self._session)
                if inspect.isawaitable(data):
                    data = await data
            except Exception as exc:
                duration_ms = int((time.monotonic() - t0) * 1000)
                logger.warning("scenario %s: step %s failed: %s", self.name, step_name, exc)
                result.steps.append(StepResult(
                    name=step_name, status='error', duration_ms=duration_ms, error=str(exc)
                ))
                if self.stop_on_error:
                    break
                continue

            duration_ms = int((time.monotonic() - t0) * 1000)
            result.steps.append(StepResult(name=step_name, status='ok', duration_ms=duration_ms, data=data))
            completed.append(step_name)
            if self._checkpoint:
                self._checkpoint.save(self.name, completed)

        result.total_ms = int((time.monotonic() - t_start) * 1000)

        if result.ok and self._checkpoint:
            self._checkpoint.clear(self.name)

        return result
