"""
Tests for the tool dispatcher.

The GraphQL backend is mocked with respx; every test checks both the tool
result and what (if anything) reached the backend.
"""

import json
from pathlib import Path

import httpx
import pytest
import respx

from graphql_mcp.client import GraphQLClient
from graphql_mcp.dispatcher import (
    INTROSPECT_SCHEMA,
    MUTATIONS_DISABLED,
    QUERY_GRAPHQL,
    ToolDispatcher,
    parse_variables,
)
from graphql_mcp.errors import ToolInputError
from graphql_mcp.introspection import SchemaSource
from graphql_mcp.operations import compile_document, load_operations

ENDPOINT = "http://backend.test/graphql"

GET_USER = "query GetUser($id: ID!) { user(id: $id) { id name } }"
CREATE_USER = "mutation CreateUser($input: UserInput!) { createUser(input: $input) { id } }"


@pytest.fixture
def client():
    return GraphQLClient(ENDPOINT, {"Authorization": "Bearer secret"})


def make_dispatcher(client, operations=(), allow_mutations=False, schema=None):
    return ToolDispatcher(
        client,
        SchemaSource.from_setting(client, schema),
        operations,
        allow_mutations=allow_mutations,
    )


def sent_payload(route) -> dict:
    return json.loads(route.calls.last.request.content)


class TestToolList:
    def test_builtins_and_operations(self, client, operations_dir: Path):
        dispatcher = make_dispatcher(client, load_operations(operations_dir))
        names = [tool.name for tool in dispatcher.list_tools()]

        assert names[:2] == [INTROSPECT_SCHEMA, QUERY_GRAPHQL]
        assert set(names[2:]) == {"GetUser", "CreateUser"}

    def test_operation_tool_schema_mirrors_variables(self, client):
        dispatcher = make_dispatcher(client, compile_document(GET_USER, "GetUser"))
        tool = dispatcher.tools["GetUser"].to_tool()

        assert tool.description == "Execute query operation: GetUser"
        assert tool.inputSchema["properties"] == {"id": {"type": "string"}}
        assert tool.inputSchema["required"] == ["id"]

    def test_operation_cannot_shadow_builtin(self, client):
        ops = compile_document("{ viewer { id } }", QUERY_GRAPHQL)
        dispatcher = make_dispatcher(client, ops)

        assert len(dispatcher.list_tools()) == 2
        assert dispatcher.tools[QUERY_GRAPHQL].input_schema["required"] == ["query"]


class TestQueryGraphQL:
    @pytest.mark.asyncio
    @respx.mock
    async def test_forwards_query_and_variables(self, client):
        route = respx.post(ENDPOINT).mock(
            return_value=httpx.Response(200, json={"data": {"user": {"id": "1"}}})
        )
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(
            QUERY_GRAPHQL, {"query": GET_USER, "variables": {"id": "1"}}
        )

        assert not result.is_error
        assert json.loads(result.content) == {"data": {"user": {"id": "1"}}}
        assert sent_payload(route) == {"query": GET_USER, "variables": {"id": "1"}}
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    @respx.mock
    async def test_variables_as_json_string(self, client):
        route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"data": {}}))
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(QUERY_GRAPHQL, {"query": GET_USER, "variables": '{"id": "7"}'})

        assert not result.is_error
        assert sent_payload(route)["variables"] == {"id": "7"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_query_is_not_sent(self, client):
        route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"data": {}}))
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(QUERY_GRAPHQL, {"query": "query {"})

        assert result.is_error
        assert result.content.startswith("Invalid GraphQL query:")
        assert not route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_mutation_rejected_when_disallowed(self, client):
        route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"data": {}}))
        dispatcher = make_dispatcher(client, allow_mutations=False)

        result = await dispatcher.call(QUERY_GRAPHQL, {"query": CREATE_USER})

        assert result.is_error
        assert result.content == MUTATIONS_DISABLED
        assert route.call_count == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_mutation_forwarded_when_allowed(self, client):
        route = respx.post(ENDPOINT).mock(
            return_value=httpx.Response(200, json={"data": {"createUser": {"id": "9"}}})
        )
        dispatcher = make_dispatcher(client, allow_mutations=True)

        result = await dispatcher.call(
            QUERY_GRAPHQL, {"query": CREATE_USER, "variables": {"input": {"name": "a"}}}
        )

        assert not result.is_error
        assert route.call_count == 1
        assert sent_payload(route)["query"] == CREATE_USER

    @pytest.mark.asyncio
    @respx.mock
    async def test_mutation_hidden_among_queries_is_rejected(self, client):
        route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"data": {}}))
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(QUERY_GRAPHQL, {"query": f"{GET_USER}\n{CREATE_USER}"})

        assert result.content == MUTATIONS_DISABLED
        assert not route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_success_status(self, client):
        respx.post(ENDPOINT).mock(return_value=httpx.Response(500, text="boom"))
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(QUERY_GRAPHQL, {"query": GET_USER})

        assert result.is_error
        assert result.content == "GraphQL request failed: Internal Server Error\nboom"

    @pytest.mark.asyncio
    @respx.mock
    async def test_errors_array_is_an_error(self, client):
        body = {"data": None, "errors": [{"message": "Cannot query field"}]}
        respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json=body))
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(QUERY_GRAPHQL, {"query": GET_USER})

        assert result.is_error
        assert result.content.startswith("The GraphQL response has errors, please fix the query:")
        assert "Cannot query field" in result.content

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_errors_array_is_success(self, client):
        respx.post(ENDPOINT).mock(
            return_value=httpx.Response(200, json={"data": {"a": 1}, "errors": []})
        )
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(QUERY_GRAPHQL, {"query": "{ a }"})

        assert not result.is_error

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error(self, client):
        respx.post(ENDPOINT).mock(side_effect=httpx.ConnectError("connection refused"))
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(QUERY_GRAPHQL, {"query": GET_USER})

        assert result.is_error
        assert result.content.startswith("Failed to execute GraphQL query:")

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_json_body(self, client):
        respx.post(ENDPOINT).mock(return_value=httpx.Response(200, text="<html>"))
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(QUERY_GRAPHQL, {"query": GET_USER})

        assert result.is_error
        assert "not valid JSON" in result.content


class TestOperationTools:
    @pytest.mark.asyncio
    @respx.mock
    async def test_runs_operation_with_file_text(self, client):
        route = respx.post(ENDPOINT).mock(
            return_value=httpx.Response(200, json={"data": {"user": {"id": "1"}}})
        )
        dispatcher = make_dispatcher(client, compile_document(GET_USER, "GetUser"))

        result = await dispatcher.call("GetUser", {"id": "1"})

        assert not result.is_error
        assert sent_payload(route) == {"query": GET_USER, "variables": {"id": "1"}}

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_required_argument(self, client):
        route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"data": {}}))
        dispatcher = make_dispatcher(client, compile_document(GET_USER, "GetUser"))

        result = await dispatcher.call("GetUser", {})

        assert result.is_error
        assert result.content.startswith("Invalid arguments for GetUser:")
        assert "id" in result.content
        assert not route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_wrong_argument_type(self, client):
        route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"data": {}}))
        dispatcher = make_dispatcher(client, compile_document(GET_USER, "GetUser"))

        result = await dispatcher.call("GetUser", {"id": 1})

        assert result.is_error
        assert not route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_mutation_operation_rejected_when_disallowed(self, client):
        route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"data": {}}))
        dispatcher = make_dispatcher(client, compile_document(CREATE_USER, "CreateUser"))

        result = await dispatcher.call("CreateUser", {"input": {"name": "a"}})

        assert result.content == MUTATIONS_DISABLED
        assert not route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_mutation_operation_allowed(self, client):
        route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"data": {}}))
        dispatcher = make_dispatcher(
            client, compile_document(CREATE_USER, "CreateUser"), allow_mutations=True
        )

        result = await dispatcher.call("CreateUser", {"input": {"name": "a"}})

        assert not result.is_error
        assert sent_payload(route)["variables"] == {"input": {"name": "a"}}

    @pytest.mark.asyncio
    @respx.mock
    async def test_multi_operation_file_selects_by_name(self, client):
        text = "query A { a }\nquery B { b }\n"
        route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"data": {}}))
        dispatcher = make_dispatcher(client, compile_document(text, "file"))

        await dispatcher.call("B", {})

        assert sent_payload(route) == {"query": text, "variables": {}, "operationName": "B"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, client):
        result = await make_dispatcher(client).call("DoesNotExist", {})
        assert result.is_error
        assert result.content == "Unknown tool: DoesNotExist"


class TestIntrospectSchemaTool:
    @pytest.mark.asyncio
    async def test_local_schema_file(self, client, tmp_path: Path):
        schema_file = tmp_path / "schema.graphql"
        schema_file.write_text("type Query { hello: String }\n")
        dispatcher = make_dispatcher(client, schema=str(schema_file))

        result = await dispatcher.call(INTROSPECT_SCHEMA, {})

        assert not result.is_error
        assert result.content == "type Query { hello: String }\n"

    @pytest.mark.asyncio
    @respx.mock
    async def test_failure_is_error_result(self, client):
        respx.post(ENDPOINT).mock(return_value=httpx.Response(502, text="bad gateway"))
        dispatcher = make_dispatcher(client)

        result = await dispatcher.call(INTROSPECT_SCHEMA, None)

        assert result.is_error
        assert result.content.startswith("Failed to introspect schema:")
        assert "bad gateway" in result.content


class TestParseVariables:
    def test_accepts_mapping_and_string(self):
        assert parse_variables({"a": 1}) == {"a": 1}
        assert parse_variables('{"a": 1}') == {"a": 1}
        assert parse_variables(None) is None
        assert parse_variables("") is None

    def test_rejects_invalid(self):
        with pytest.raises(ToolInputError):
            parse_variables("{oops")
        with pytest.raises(ToolInputError):
            parse_variables("[1, 2]")
