"""
Test Constraint Registry

Dense, index-addressed sequence with tombstone-on-removal.
"""

import pytest

from scheme_controller.core.constraints import ConstraintRegistry, GlobalConstraint
from scheme_controller.core.permissions import ZERO_HASH, hash_of


class AllowAll(GlobalConstraint):
    def __init__(self, name: str):
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def pre(self, caller, params_hash, tag):
        return True

    def post(self, caller, params_hash, tag):
        return True


class TestConstraintRegistry:
    """Ordering, tombstones and lookup"""

    def setup_method(self):
        self.registry = ConstraintRegistry()
        self.x = AllowAll("x")
        self.y = AllowAll("y")
        self.z = AllowAll("z")

    def test_add_returns_increasing_indices(self):
        assert self.registry.add(self.x, hash_of("px")) == 0
        assert self.registry.add(self.y) == 1
        assert self.registry.get(1).params_hash == ZERO_HASH

    def test_remove_tombstones_in_place(self):
        """Surviving entries keep their index"""
        self.registry.add(self.x)
        self.registry.add(self.y)
        self.registry.add(self.z)

        assert self.registry.remove(self.y) is True

        assert len(self.registry) == 3
        assert self.registry.get(1) is None
        assert self.registry.get(0).constraint is self.x
        assert self.registry.get(2).constraint is self.z
        assert [i for i, _ in self.registry.live()] == [0, 2]

    def test_remove_missing_reports_failure(self):
        self.registry.add(self.x)
        assert self.registry.remove(self.y) is False
        assert self.registry.count_live() == 1

    def test_remove_twice(self):
        self.registry.add(self.x)
        assert self.registry.remove(self.x) is True
        assert self.registry.remove(self.x) is False

    def test_remove_takes_first_live_duplicate(self):
        self.registry.add(self.x, hash_of("first"))
        self.registry.add(self.x, hash_of("second"))

        self.registry.remove(self.x)

        assert self.registry.get(0) is None
        assert self.registry.params_of(self.x) == hash_of("second")

    def test_for_each_live_skips_tombstones_in_order(self):
        self.registry.add(self.x, hash_of("px"))
        self.registry.add(self.y, hash_of("py"))
        self.registry.add(self.z, hash_of("pz"))
        self.registry.remove(self.x)

        seen = []
        self.registry.for_each_live(lambda c, p: seen.append((c.name, p)))

        assert seen == [("y", hash_of("py")), ("z", hash_of("pz"))]

    def test_add_rejects_none(self):
        with pytest.raises(ValueError):
            self.registry.add(None)

    def test_lookup_helpers(self):
        self.registry.add(self.x, hash_of("px"))
        assert self.registry.is_registered(self.x)
        assert not self.registry.is_registered(self.y)
        assert self.registry.index_of(self.x) == 0
        assert self.registry.params_of(self.y) is None

    def test_copy_and_restore(self):
        self.registry.add(self.x)
        snapshot = self.registry.copy()
        self.registry.remove(self.x)
        self.registry.add(self.y)
        self.registry.restore(snapshot)
        assert len(self.registry) == 1
        assert self.registry.is_registered(self.x)

    def test_dict_layout_keeps_tombstones(self):
        self.registry.add(self.x)
        self.registry.add(self.y)
        self.registry.remove(self.x)

        data = self.registry.to_dict()

        assert data["entries"][0] is None
        assert data["entries"][1]["constraint"] == "y"
        assert self.registry.get_stats() == {"total_slots": 2, "live_constraints": 1, "tombstones": 1}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
