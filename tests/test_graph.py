"""Tests for the Microsoft Graph client."""

import json
from unittest import mock

import pytest
from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure_mock import create_mock_credential

from ade_bootstrap.graph import GraphClient


def _response(status_code: int = 200, body=None, reason: str = "OK") -> mock.MagicMock:
    response = mock.MagicMock()
    response.status_code = status_code
    response.reason = reason
    content = json.dumps(body).encode() if body is not None else b""
    response.content = content
    response.text.return_value = content.decode()
    response.json.return_value = body
    return response


@pytest.fixture
def graph():
    client = GraphClient(create_mock_credential())
    with mock.patch.object(client._client, "send_request") as send:
        yield client, send


class TestListing:
    def test_find_applications_filters_by_display_name(self, graph) -> None:
        client, send = graph
        send.return_value = _response(body={"value": [{"id": "o1", "appId": "a1"}]})

        apps = client.find_applications("proj-Dev")

        assert apps == [{"id": "o1", "appId": "a1"}]
        request = send.call_args.args[0]
        assert request.method == "GET"
        assert "/applications" in request.url
        assert "displayName" in request.url

    def test_follows_next_link(self, graph) -> None:
        client, send = graph
        next_link = (
            "https://graph.microsoft.com/v1.0/applications/o1/federatedIdentityCredentials"
            "?$skiptoken=x"
        )
        send.side_effect = [
            _response(body={"value": [{"name": "a"}], "@odata.nextLink": next_link}),
            _response(body={"value": [{"name": "b"}]}),
        ]

        credentials = client.list_federated_credentials("o1")

        assert [c["name"] for c in credentials] == ["a", "b"]
        assert send.call_args_list[1].args[0].url == next_link

    def test_find_service_principal_missing(self, graph) -> None:
        client, send = graph
        send.return_value = _response(body={"value": []})

        assert client.find_service_principal("a1") is None

    def test_tenant_id_from_organization(self, graph) -> None:
        client, send = graph
        send.return_value = _response(body={"value": [{"id": "tenant-guid"}]})

        assert client.get_tenant_id() == "tenant-guid"


class TestMutations:
    def test_create_application(self, graph) -> None:
        client, send = graph
        send.return_value = _response(201, {"id": "o1", "appId": "a1", "displayName": "x"})

        application = client.create_application("x")

        assert application["appId"] == "a1"
        request = send.call_args.args[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"displayName": "x"}

    def test_empty_response_body(self, graph) -> None:
        client, send = graph
        send.return_value = _response(204, reason="No Content")

        assert client.create_federated_credential("o1", {"name": "n"}) == {}


class TestErrors:
    def test_not_found_mapped(self, graph) -> None:
        client, send = graph
        send.return_value = _response(
            404,
            {"error": {"code": "Request_ResourceNotFound", "message": "gone"}},
            reason="Not Found",
        )

        with pytest.raises(ResourceNotFoundError) as exc_info:
            client.list_federated_credentials("missing")

        assert exc_info.value.status_code == 404

    def test_conflict_mapped(self, graph) -> None:
        client, send = graph
        send.return_value = _response(
            409,
            {"error": {"code": "Request_MultipleObjectsWithSameKeyValue", "message": "dup"}},
            reason="Conflict",
        )

        with pytest.raises(ResourceExistsError):
            client.create_service_principal("a1")
