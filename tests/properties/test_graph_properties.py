"""Property-based tests for start ordering and configuration merging."""

import copy
from typing import Any

from hypothesis import given, strategies as st

from vepctl.config._loader import deep_merge
from vepctl.supervisor import ServiceGraph, ServiceSpec

from tests.conftest import process_spec


@st.composite
def acyclic_specs(draw: st.DrawFn) -> list[ServiceSpec]:
    """Specs in dependency-first order, each depending only on earlier ones."""
    count = draw(st.integers(min_value=1, max_value=12))
    specs: list[ServiceSpec] = []
    for index in range(count):
        earlier = [f"svc{i}" for i in range(index)]
        deps = draw(st.lists(st.sampled_from(earlier), unique=True)) if earlier else []
        specs.append(process_spec(f"svc{index}", depends_on=tuple(deps)))
    return specs


class TestStartOrderProperties:
    @given(data=st.data(), specs=acyclic_specs())
    def test_order_is_a_permutation_respecting_dependencies(
        self, data: st.DataObject, specs: list[ServiceSpec]
    ) -> None:
        shuffled = data.draw(st.permutations(specs))
        order = [spec.id for spec in ServiceGraph(shuffled).ordered()]

        assert sorted(order) == sorted(spec.id for spec in specs)
        position = {service_id: i for i, service_id in enumerate(order)}
        for spec in specs:
            for dep in spec.depends_on:
                assert position[dep] < position[spec.id]

    @given(specs=acyclic_specs())
    def test_dependency_first_source_order_is_kept(
        self, specs: list[ServiceSpec]
    ) -> None:
        order = ServiceGraph(specs).ordered()

        assert [spec.id for spec in order] == [spec.id for spec in specs]

    @given(data=st.data(), specs=acyclic_specs())
    def test_order_is_deterministic(
        self, data: st.DataObject, specs: list[ServiceSpec]
    ) -> None:
        shuffled = data.draw(st.permutations(specs))

        assert ServiceGraph(shuffled).ordered() == ServiceGraph(shuffled).ordered()


_keys = st.sampled_from(["supervisor", "logging", "grace_period", "level", "file"])
_leaves = st.one_of(
    st.integers(), st.booleans(), st.text(max_size=8), st.lists(st.integers())
)
_tables = st.recursive(
    st.dictionaries(_keys, _leaves, max_size=4),
    lambda children: st.dictionaries(_keys, st.one_of(_leaves, children), max_size=4),
    max_leaves=12,
)


class TestDeepMergeProperties:
    @given(base=_tables, override=_tables)
    def test_inputs_are_not_modified(
        self, base: dict[str, Any], override: dict[str, Any]
    ) -> None:
        base_before = copy.deepcopy(base)
        override_before = copy.deepcopy(override)

        _ = deep_merge(base, override)

        assert base == base_before
        assert override == override_before

    @given(base=_tables, override=_tables)
    def test_override_keys_win(
        self, base: dict[str, Any], override: dict[str, Any]
    ) -> None:
        merged = deep_merge(base, override)

        assert set(merged) == set(base) | set(override)
        for key, value in override.items():
            if not (isinstance(value, dict) and isinstance(base.get(key), dict)):
                assert merged[key] == value

    @given(table=_tables)
    def test_merging_empty_override_copies_base(self, table: dict[str, Any]) -> None:
        assert deep_merge(table, {}) == table
        assert deep_merge({}, table) == table
