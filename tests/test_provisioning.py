"""Tests for the provisioning orchestrator: create, rollback, failure stages."""
import asyncio

import pytest

from config import PanelType
from plans import find_plan
from services.errors import ConfigError, ProvisionFailed
from services.provisioning import ProvisioningOrchestrator

UNLI = find_plan("unli")
TWO_GB = find_plan("2gb")


class TestProvision:
    def test_success(self, panel, panels, make_transaction):
        orchestrator = ProvisioningOrchestrator(panels)

        result = asyncio.run(orchestrator.provision(make_transaction(plan_id="2gb"), TWO_GB))

        assert result.provider_user_id == panel.created_users[0]["id"]
        assert result.provider_server_id == panel.created_servers[0]["id"]
        assert result.panel_url == "https://panel.example.com"
        assert result.generated_password == panel.created_users[0]["password"]
        server = panel.created_servers[0]
        assert (server["memory"], server["disk"], server["cpu"]) == (2048, 2048, 60)
        assert server["name"] == "budi's Server"

    def test_custom_password_length(self, panels, make_transaction):
        orchestrator = ProvisioningOrchestrator(panels, password_length=16)
        result = asyncio.run(orchestrator.provision(make_transaction(), UNLI))
        assert len(result.generated_password) == 16

    def test_create_user_failure_has_nothing_to_roll_back(self, panel, panels, make_transaction, provider_error):
        panel.create_user_error = provider_error("taken", status_code=422)
        orchestrator = ProvisioningOrchestrator(panels)

        with pytest.raises(ProvisionFailed) as exc_info:
            asyncio.run(orchestrator.provision(make_transaction(), UNLI))

        assert exc_info.value.stage == "create_user"
        assert panel.deleted_users == []
        assert panel.created_servers == []

    def test_taken_username_has_own_stage(self, panel, panels, make_transaction, provider_error):
        panel.create_user_error = provider_error(
            "Validation failed", status_code=422, detail="The username has already been taken."
        )
        orchestrator = ProvisioningOrchestrator(panels)

        with pytest.raises(ProvisionFailed) as exc_info:
            asyncio.run(orchestrator.provision(make_transaction(), UNLI))

        assert exc_info.value.stage == "user_exists"
        assert panel.created_servers == []

    def test_add_server_failure_rolls_back_user(self, panel, panels, make_transaction, provider_error):
        panel.add_server_error = provider_error("no allocation", status_code=422)
        orchestrator = ProvisioningOrchestrator(panels)

        with pytest.raises(ProvisionFailed) as exc_info:
            asyncio.run(orchestrator.provision(make_transaction(), UNLI))

        assert exc_info.value.stage == "add_server"
        assert panel.deleted_users == [panel.created_users[0]["id"]]
        assert panel.users == []

    def test_rollback_failure_keeps_original_error(self, panel, panels, make_transaction, provider_error):
        original = provider_error("server quota exceeded", status_code=422)
        panel.add_server_error = original
        panel.delete_user_result = False
        orchestrator = ProvisioningOrchestrator(panels)

        with pytest.raises(ProvisionFailed) as exc_info:
            asyncio.run(orchestrator.provision(make_transaction(), UNLI))

        assert exc_info.value.cause is original
        assert len(panel.deleted_users) == 1

    def test_missing_egg_image_rolls_back(self, panel, panels, make_transaction):
        panel.add_server_error = ConfigError("image missing")
        orchestrator = ProvisioningOrchestrator(panels)

        with pytest.raises(ProvisionFailed):
            asyncio.run(orchestrator.provision(make_transaction(), UNLI))
        assert len(panel.deleted_users) == 1

    def test_unconfigured_panel_type(self, panels, make_transaction):
        orchestrator = ProvisioningOrchestrator(panels)

        with pytest.raises(ProvisionFailed) as exc_info:
            asyncio.run(orchestrator.provision(make_transaction(panel_type=PanelType.PUBLIC), UNLI))
        assert exc_info.value.stage == "resolve_panel"
