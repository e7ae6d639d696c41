"""Plan builder: desired specs + recorded state -> ordered plan."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from stackpilot.core.errors import CycleError, ValidationError
from stackpilot.orchestration.results import Plan, PlanAction, PlanStep
from stackpilot.specs.models import ResourceSpec
from stackpilot.state.base import ResourceRecord


class PlanBuilder:
    """Builds a dependency-ordered plan. Pure: performs no I/O."""

    def build(
        self,
        specs: Sequence[ResourceSpec],
        records: Mapping[str, ResourceRecord] | Iterable[ResourceRecord] = (),
        reapply: Iterable[str] = (),
    ) -> Plan:
        """
        Compute the plan for ``specs`` given previously recorded state.

        Args:
            specs: Declared resources, in manifest order
            records: Recorded state, by name or as a sequence of records
            reapply: Names to update even when their fingerprint is unchanged

        Raises:
            ValidationError: duplicate names, unknown dependencies or reapply targets
            CycleError: the dependency graph is not acyclic
        """
        by_name = self._index(specs)
        recorded = records if isinstance(records, Mapping) else {r.name: r for r in records}
        forced = set(reapply)

        unknown = sorted(forced - set(by_name))
        if unknown:
            raise ValidationError(
                f"Cannot reapply undeclared resources: {', '.join(unknown)}",
                details={"resources": unknown},
            )

        steps = []
        for spec in self._topological_order(specs, by_name):
            record = recorded.get(spec.name)
            steps.append(PlanStep(spec=spec, action=self._action(spec, record, forced), record=record))

        orphaned = sorted(name for name in recorded if name not in by_name)
        return Plan(steps=steps, orphaned=orphaned)

    @staticmethod
    def _index(specs: Sequence[ResourceSpec]) -> dict[str, ResourceSpec]:
        by_name: dict[str, ResourceSpec] = {}
        for spec in specs:
            if spec.name in by_name:
                raise ValidationError(
                    f"Duplicate resource name: {spec.name}", details={"resource": spec.name}
                )
            by_name[spec.name] = spec

        for spec in specs:
            for dep in spec.depends_on:
                if dep not in by_name:
                    raise ValidationError(
                        f"Resource '{spec.name}' depends on undeclared resource '{dep}'",
                        details={"resource": spec.name, "dependency": dep},
                    )
        return by_name

    @staticmethod
    def _action(spec: ResourceSpec, record: ResourceRecord | None, forced: set[str]) -> PlanAction:
        if record is None:
            return PlanAction.CREATE
        if spec.name in forced or record.fingerprint != spec.fingerprint():
            return PlanAction.UPDATE
        return PlanAction.NOOP

    def _topological_order(
        self, specs: Sequence[ResourceSpec], by_name: dict[str, ResourceSpec]
    ) -> list[ResourceSpec]:
        # Kahn's algorithm, always taking the earliest declared ready spec
        remaining = {spec.name: set(spec.depends_on) for spec in specs}
        ordered: list[ResourceSpec] = []

        while remaining:
            ready = next((spec for spec in specs if remaining.get(spec.name) == set()), None)
            if ready is None:
                raise CycleError(self._find_cycle(remaining))
            ordered.append(ready)
            del remaining[ready.name]
            for deps in remaining.values():
                deps.discard(ready.name)

        return ordered

    @staticmethod
    def _find_cycle(remaining: dict[str, set[str]]) -> list[str]:
        """Walk unresolved dependencies until a node repeats."""
        start = next(iter(remaining))
        path = [start]
        seen = {start: 0}
        node = start
        while True:
            node = sorted(remaining[node])[0]
            if node in seen:
                return path[seen[node]:] + [node]
            seen[node] = len(path)
            path.append(node)
