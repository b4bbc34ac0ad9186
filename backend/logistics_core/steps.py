"""Configuration-driven step registry.

Order, enablement and display names come from the common code store
(group ``PG_PROC``); what each step does is bound in code by step code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from logistics_core.outcome import StepStatus
from logistics_core.protocol import CommonCodeSource

logger = logging.getLogger(__name__)

DEFAULT_GROUP_CODE = "PG_PROC"


@dataclass(frozen=True)
class ProcessingStep:
    """One enabled step in run order. ``index`` is 1-based."""

    index: int
    code: str
    name: str
    sort_order: int
    enabled: bool = True


@dataclass(frozen=True)
class StepDefinition:
    """Built-in step entry used for fallback ordering and seeding."""

    code: str
    name: str
    sort_order: int
    description: str = ""


StepFn = Callable[[Any], Awaitable[StepStatus | None]]


@dataclass(frozen=True)
class StepHandler:
    """Code side of a step: what to run and whether failure is fatal."""

    execute: StepFn
    critical: bool = True


@dataclass(frozen=True)
class BoundStep:
    step: ProcessingStep
    execute: StepFn
    critical: bool = True

    @property
    def index(self) -> int:
        return self.step.index

    @property
    def code(self) -> str:
        return self.step.code

    @property
    def name(self) -> str:
        return self.step.name


class StepRegistry:
    """Loads the ordered step list and binds it to handlers."""

    def __init__(
        self,
        source: CommonCodeSource | None,
        defaults: tuple[StepDefinition, ...] | list[StepDefinition],
        group_code: str = DEFAULT_GROUP_CODE,
    ):
        self._source = source
        self._defaults = tuple(defaults)
        self.group_code = group_code

    @property
    def defaults(self) -> tuple[StepDefinition, ...]:
        return self._defaults

    def default_steps(self) -> list[ProcessingStep]:
        ordered = sorted(self._defaults, key=lambda d: (d.sort_order, d.code))
        return [
            ProcessingStep(index=i, code=d.code, name=d.name, sort_order=d.sort_order)
            for i, d in enumerate(ordered, start=1)
        ]

    async def load_steps(self, group_code: str | None = None) -> list[ProcessingStep]:
        """Enabled steps sorted by sort_order, falling back to defaults.

        The store being unreachable or having no rows for the group is not
        an error: the built-in ordering is used and a warning is logged.
        """
        group = group_code or self.group_code
        if self._source is None:
            logger.warning(f"No common code source configured, using default {group} steps")
            return self.default_steps()

        try:
            rows = await self._source.get_by_group(group)
        except Exception as e:
            logger.warning(f"Failed to load {group} steps ({e}), using defaults")
            return self.default_steps()

        if not rows:
            logger.warning(f"No {group} rows in common codes, using defaults")
            return self.default_steps()

        enabled = sorted(
            (r for r in rows if r.is_used),
            key=lambda r: (r.sort_order, r.code),
        )
        steps = [
            ProcessingStep(
                index=i,
                code=r.code,
                name=r.code_name or r.code,
                sort_order=r.sort_order,
            )
            for i, r in enumerate(enabled, start=1)
        ]
        logger.info(f"Loaded {len(steps)} enabled {group} steps ({len(rows) - len(steps)} disabled)")
        return steps

    @staticmethod
    def bind(
        steps: list[ProcessingStep],
        handlers: dict[str, StepHandler],
    ) -> list[BoundStep]:
        """Pair each step with its handler, renumbering after skips.

        Codes without a handler are skipped with a warning.
        """
        bound: list[BoundStep] = []
        for step in steps:
            handler = handlers.get(step.code)
            if handler is None:
                logger.warning(f"No handler for step code {step.code!r} ({step.name}), skipping")
                continue
            renumbered = ProcessingStep(
                index=len(bound) + 1,
                code=step.code,
                name=step.name,
                sort_order=step.sort_order,
                enabled=step.enabled,
            )
            bound.append(BoundStep(renumbered, handler.execute, handler.critical))
        return bound

    def default_common_codes(self) -> list[dict[str, Any]]:
        """Seed rows for the common code store."""
        return [
            {
                "group_code": self.group_code,
                "code": d.code,
                "code_name": d.name,
                "description": d.description,
                "sort_order": d.sort_order,
                "is_used": True,
            }
            for d in self._defaults
        ]
