"""
Test Inspection API

Read-only HTTP views over a controller.
"""

import pytest
from fastapi.testclient import TestClient

from scheme_controller.api import create_app
from scheme_controller.core.constraints import GlobalConstraint
from scheme_controller.core.controller import Controller
from scheme_controller.core.permissions import SchemePermission as P, hash_of
from scheme_controller.core.resources import InMemoryAvatar, InMemoryReputation, InMemoryToken


class CapConstraint(GlobalConstraint):
    name = "cap"

    def pre(self, caller, params_hash, tag):
        return True

    def post(self, caller, params_hash, tag):
        return True


class TestInspectionApi:
    """Endpoints reflect controller state"""

    def setup_method(self):
        self.controller = Controller(
            InMemoryAvatar(), InMemoryToken(), InMemoryReputation(),
            ["G"], [hash_of("genesis")], [0b1111],
            address="controller:api",
        )
        self.client = TestClient(create_app(self.controller))

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "controller": "controller:api",
            "retired": False,
            "upgrade_target": None,
        }

    def test_scheme_lookup(self):
        self.controller.register_scheme("G", "S", None, P.CAN_MANAGE_CONSTRAINTS)

        data = self.client.get("/schemes/S").json()

        assert data["registered"] is True
        assert data["permissions"] == 0b0101
        assert data["permission_names"] == ["REGISTERED", "CAN_MANAGE_CONSTRAINTS"]
        assert data["config_hash"] == "0x" + "00" * 32

    def test_unknown_scheme_is_unregistered(self):
        data = self.client.get("/schemes/nobody").json()
        assert data["registered"] is False
        assert data["permissions"] == 0

    def test_scheme_table(self):
        data = self.client.get("/schemes").json()
        assert list(data) == ["G"]
        assert data["G"]["config_hash"] == "0x" + hash_of("genesis").hex()

    def test_constraints_show_tombstones(self):
        cap = CapConstraint()
        self.controller.add_global_constraint("G", cap)
        self.controller.remove_global_constraint("G", cap)

        data = self.client.get("/constraints").json()

        assert data["entries"] == [None]
        assert data["live"] == 0

    def test_audit_filters(self):
        self.controller.mint_tokens("G", 3, "bob")
        self.controller.send_funds("G", 0, "bob")

        assert len(self.client.get("/audit").json()) == 2
        events = self.client.get("/audit", params={"event_type": "mint-tokens"}).json()
        assert [e["params"]["amount"] for e in events] == [3]
        assert len(self.client.get("/audit", params={"limit": 1}).json()) == 1

    def test_audit_rejects_unknown_event_type(self):
        response = self.client.get("/audit", params={"event_type": "self-destruct"})
        assert response.status_code == 400

    def test_state_after_upgrade(self):
        self.controller.upgrade("G", "controller:v2")

        state = self.client.get("/state").json()
        health = self.client.get("/health").json()

        assert state["upgrade_target"] == "controller:v2"
        assert health["retired"] is True

    def test_stats(self):
        stats = self.client.get("/stats").json()
        assert stats["permissions"]["registered_schemes"] == 1
        assert stats["constraints"]["live_constraints"] == 0

    def test_no_mutating_routes(self):
        assert self.client.post("/schemes", json={}).status_code == 405


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
