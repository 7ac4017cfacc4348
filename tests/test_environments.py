"""Tests for Azure Deployment Environments operations."""

import pytest
from azure_mock import MOCK_SUBSCRIPTION_ID, MockResource, make_http_error

from ade_bootstrap.config import Config
from ade_bootstrap.environments import EnvironmentInstance, EnvironmentProvisioner, parse_parameters
from ade_bootstrap.errors import ConflictError, NotFoundError, ProvisionError
from ade_bootstrap.session import AzureSession


def _provisioner(config: Config) -> EnvironmentProvisioner:
    session = AzureSession(config)
    session.ensure_authenticated()
    return EnvironmentProvisioner(session)


class TestParseParameters:
    def test_mapping(self) -> None:
        assert parse_parameters({"sku": "B1"}) == {"sku": "B1"}

    def test_json_string(self) -> None:
        assert parse_parameters('{"sku": "B1", "count": 2}') == {"sku": "B1", "count": 2}

    def test_none_and_blank(self) -> None:
        assert parse_parameters(None) is None
        assert parse_parameters("  ") is None

    def test_invalid_json(self) -> None:
        with pytest.raises(ValueError):
            parse_parameters("{not json")

    def test_non_object_json(self) -> None:
        with pytest.raises(ValueError):
            parse_parameters("[1, 2]")


class TestEnvironmentInstance:
    def test_derives_location(self) -> None:
        instance = EnvironmentInstance.from_remote({
            "name": "e1",
            "environmentType": "Dev",
            "environmentDefinitionName": "WebApp",
            "catalogName": "catalog",
            "resourceGroupId": "/subscriptions/abc/resourceGroups/proj-e1",
        })

        assert instance.resource_group == "proj-e1"
        assert instance.subscription == "abc"
        assert instance.to_dict()["resourceGroup"] == "proj-e1"


class TestDefinitions:
    def test_list_definitions(self, config: Config, azure) -> None:
        azure.devcenter.add_definition("WebApp", "catalog")
        azure.devcenter.add_definition("Function", "catalog")

        definitions = _provisioner(config).list_definitions()

        assert [d["name"] for d in definitions] == ["WebApp", "Function"]

    def test_get_definition(self, config: Config, azure) -> None:
        azure.devcenter.add_definition("WebApp", "catalog", [{"id": "sku", "type": "string"}])

        definition = _provisioner(config).get_definition("WebApp")

        assert definition["parameters"] == [{"id": "sku", "type": "string"}]

    def test_missing_definition(self, config: Config, azure) -> None:
        with pytest.raises(NotFoundError):
            _provisioner(config).get_definition("Nope")


class TestCreateEnvironment:
    """Tests for EnvironmentProvisioner.create_environment."""

    @pytest.mark.asyncio
    async def test_create_derives_resource_group(self, config: Config, azure) -> None:
        environment = await _provisioner(config).create_environment(
            "e1", "Dev", "WebApp", parameters='{"sku": "B1"}'
        )

        assert environment.resource_group == "proj-e1"
        assert environment.subscription == MOCK_SUBSCRIPTION_ID
        assert environment.catalog_name == "catalog"
        assert azure.state.environments[("proj", "e1")]["parameters"] == {"sku": "B1"}

    @pytest.mark.asyncio
    async def test_invalid_parameters_fail_before_any_call(self, config: Config, azure) -> None:
        with pytest.raises(ValueError):
            await _provisioner(config).create_environment(
                "e1", "Dev", "WebApp", parameters="{broken"
            )

        assert azure.state.calls == []

    @pytest.mark.asyncio
    async def test_existing_environment_conflicts(self, config: Config, azure) -> None:
        provisioner = _provisioner(config)
        await provisioner.create_environment("e1", "Dev", "WebApp")

        with pytest.raises(ConflictError):
            await provisioner.create_environment("e1", "Dev", "WebApp")

        assert azure.state.call_count("devcenter.begin_create_or_update_environment") == 1

    @pytest.mark.asyncio
    async def test_remote_conflict(self, config: Config, azure) -> None:
        azure.state.fail_operations["devcenter.begin_create_or_update_environment"] = (
            make_http_error(409, "EnvironmentNameInUse", "Name in use")
        )

        with pytest.raises(ConflictError):
            await _provisioner(config).create_environment("e1", "Dev", "WebApp")

    @pytest.mark.asyncio
    async def test_remote_rejection(self, config: Config, azure) -> None:
        azure.state.fail_operations["devcenter.begin_create_or_update_environment"] = (
            make_http_error(400, "InvalidEnvironmentType", "Unknown environment type")
        )

        with pytest.raises(ProvisionError) as exc_info:
            await _provisioner(config).create_environment("e1", "Nope", "WebApp")

        assert "Unknown environment type" in exc_info.value.message


class TestGetEnvironment:
    def test_missing_environment(self, config: Config, azure) -> None:
        with pytest.raises(NotFoundError):
            _provisioner(config).get_environment("ghost")


class TestListResources:
    def test_lists_resource_group_inventory(self, config: Config, azure) -> None:
        rg_id = azure.state.add_resource_group("rg-app")
        azure.state.put_resource(
            MockResource(id=f"{rg_id}/providers/Microsoft.Web/sites/app", name="app",
                         type="Microsoft.Web/sites")
        )

        resources = _provisioner(config).list_resources("rg-app")

        assert resources == [{
            "id": f"{rg_id}/providers/Microsoft.Web/sites/app",
            "name": "app",
            "type": "Microsoft.Web/sites",
            "location": "westeurope",
            "tags": {},
        }]

    def test_missing_resource_group(self, config: Config, azure) -> None:
        with pytest.raises(NotFoundError):
            _provisioner(config).list_resources("rg-missing")
