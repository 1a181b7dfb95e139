"""Dependency-ordered collection of service specs."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

import rustworkx as rx

from vepctl.exceptions import ConfigurationError, ServiceNotFoundError

from ._models import ProbeKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from ._models import ServiceSpec


@final
class ServiceGraph:
    """An ordered set of ServiceSpecs with dependency edges.

    Source order is significant: it is the tie-breaker of the start order,
    so a graph written dependencies-first starts exactly as written.
    """

    __slots__ = ("_specs",)

    def __init__(self, specs: Iterable[ServiceSpec]) -> None:
        self._specs: tuple[ServiceSpec, ...] = tuple(specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __iter__(self) -> Iterator[ServiceSpec]:
        return iter(self.ordered())

    @property
    def specs(self) -> tuple[ServiceSpec, ...]:
        """Return the specs in source order."""
        return self._specs

    def get(self, service_id: str) -> ServiceSpec:
        """Get a spec by id.

        Raises:
            ServiceNotFoundError: If no spec has that id.
        """
        for spec in self._specs:
            if spec.id == service_id:
                return spec
        msg = f"Service '{service_id}' not found"
        raise ServiceNotFoundError(msg, service_id=service_id)

    def dependents(self, service_id: str) -> tuple[str, ...]:
        """Return ids of specs that directly depend on service_id."""
        return tuple(s.id for s in self._specs if service_id in s.depends_on)

    def claimed_ports(self) -> dict[int, str]:
        """Map every claimed port to the id of the spec claiming it."""
        return {port: spec.id for spec in self._specs for port in spec.claims_ports}

    def validate(self) -> None:
        """Check ids, references and acyclicity.

        Raises:
            ConfigurationError: If the graph is invalid.
        """
        self._check_declarations()
        graph, _ = self._build()
        if rx.is_directed_acyclic_graph(graph):
            return

        cycle = self._find_cycle(graph)
        msg = f"Dependency cycle: {' -> '.join(cycle)}"
        raise ConfigurationError(
            msg,
            service_id=cycle[0] if cycle else None,
            cycle=cycle,
        )

    def ordered(self) -> tuple[ServiceSpec, ...]:
        """Return specs with every dependency before its dependents.

        Raises:
            ConfigurationError: If the graph is invalid.
        """
        self.validate()
        graph, _ = self._build()
        position = {spec.id: i for i, spec in enumerate(self._specs)}
        by_id = {spec.id: spec for spec in self._specs}

        sorted_ids: list[str] = rx.lexicographical_topological_sort(
            graph,
            key=lambda sid: f"{position[sid]:08d}",
        )
        return tuple(by_id[sid] for sid in sorted_ids)

    def _check_declarations(self) -> None:
        seen: set[str] = set()
        for spec in self._specs:
            if not spec.id:
                msg = "Service id must not be empty"
                raise ConfigurationError(msg)
            if spec.id in seen:
                msg = f"Duplicate service id '{spec.id}'"
                raise ConfigurationError(msg, service_id=spec.id)
            seen.add(spec.id)

        claimed: dict[int, str] = {}
        for spec in self._specs:
            for dep in spec.depends_on:
                if dep == spec.id:
                    msg = f"Service '{spec.id}' depends on itself"
                    raise ConfigurationError(
                        msg, service_id=spec.id, cycle=(spec.id, spec.id)
                    )
                if dep not in seen:
                    msg = f"Service '{spec.id}' depends on unknown service '{dep}'"
                    raise ConfigurationError(msg, service_id=spec.id)
            for port in spec.claims_ports:
                owner = claimed.setdefault(port, spec.id)
                if owner != spec.id:
                    msg = f"Port {port} claimed by both '{owner}' and '{spec.id}'"
                    raise ConfigurationError(msg, service_id=spec.id)
            if (
                spec.probe is not None
                and spec.probe.kind == ProbeKind.TCP
                and spec.probe.port is None
            ):
                msg = f"Service '{spec.id}' has a tcp probe without a port"
                raise ConfigurationError(msg, service_id=spec.id)

    def _build(self) -> tuple[rx.PyDiGraph[str, None], dict[str, int]]:
        # Edges point from a dependency to its dependent
        graph: rx.PyDiGraph[str, None] = rx.PyDiGraph(check_cycle=False)
        node_indices: dict[str, int] = {}
        for spec in self._specs:
            node_indices[spec.id] = graph.add_node(spec.id)
        for spec in self._specs:
            for dep in spec.depends_on:
                _ = graph.add_edge(node_indices[dep], node_indices[spec.id], None)
        return graph, node_indices

    def _find_cycle(self, graph: rx.PyDiGraph[str, None]) -> tuple[str, ...]:
        for idx in graph.node_indices():
            cycle_edges = rx.digraph_find_cycle(graph, idx)
            if cycle_edges:
                cycle_ids = [graph[source_idx] for source_idx, _ in cycle_edges]
                _, last_target = cycle_edges[-1]
                cycle_ids.append(graph[last_target])
                return tuple(cycle_ids)
        return ()
