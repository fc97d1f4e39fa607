from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from ledger_resolver.core.ids import normalize
from ledger_resolver.services.ledger_client import LedgerClient
from ledger_resolver.services.records import ResolverConfig
from ledger_resolver.services.resolver import ProjectResolver

RPC_URL = "https://fullnode.test"
PACKAGE_ID = "0x" + "ab" * 32
PROJECT_TYPE = f"{PACKAGE_ID}::devhub::Project"
EVENT_TYPE = f"{PACKAGE_ID}::devhub::ProjectCreated"
REGISTRY_ID = "0x" + "0a" * 32
TABLE_ID = "0x" + "7b" * 32
OWNER = "0x" + "c1" * 32
REQUESTER = "0x" + "e5" * 32


def project_fields(title: str = "Indexer rewrite", **overrides: Any) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "title": title,
        "short_summary": "Rewrite the event indexer",
        "description": "Long form description",
        "category": "Infrastructure",
        "experience_level": "Senior",
        "budget_min": "500",
        "budget_max": "1500",
        "timeline_weeks": "6",
        "required_skills": ["rust", "move"],
        "owner": OWNER,
        "applications_status": "Open",
        "creation_timestamp": "1717000000000",
        "attachments_walrus_blob_ids": ["blob-1"],
    }
    fields.update(overrides)
    return fields


def object_data(object_id: str, type_: str, fields: dict[str, Any], owner: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "objectId": object_id,
        "version": "1",
        "digest": "digest",
        "type": type_,
        "owner": owner or {"Shared": {"initial_shared_version": 1}},
        "content": {"dataType": "moveObject", "type": type_, "hasPublicTransfer": False, "fields": fields},
    }


class FakeSuiNode:
    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.dynamic_fields: dict[str, list[dict[str, Any]]] = {}
        self.events: list[dict[str, Any]] = []
        self.owned: dict[str, list[dict[str, Any]]] = {}
        self.rpc_failures: dict[str, str] = {}
        self.http_failures: set[str] = set()
        self.delays: dict[str, float] = {}
        self.calls: list[tuple[str, list[Any]]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def add_object(self, object_id: str, fields: dict[str, Any], *, type_: str = PROJECT_TYPE, owner: str | None = None) -> None:
        owner_json = {"AddressOwner": owner} if owner else None
        self.objects[normalize(object_id)] = object_data(object_id, type_, fields, owner_json)
        if owner:
            self.owned.setdefault(normalize(owner), []).append(self.objects[normalize(object_id)])

    def add_registry(self, *, table: Any = None, registry_id: str = REGISTRY_ID) -> None:
        if table is None:
            table = {
                "type": f"0x2::table::Table<u64, {PROJECT_TYPE}>",
                "fields": {"id": {"id": TABLE_ID}, "size": "0"},
            }
        self.add_object(
            registry_id,
            {"id": {"id": registry_id}, "projects": table, "admins": []},
            type_=f"{PACKAGE_ID}::devhub::DevHub",
        )

    def add_table_entry(
        self,
        name: Any,
        fields: dict[str, Any] | None,
        *,
        field_object_id: str,
        parent_id: str = TABLE_ID,
        value_type: str = PROJECT_TYPE,
    ) -> None:
        field_type = f"0x2::dynamic_field::Field<u64, {value_type}>"
        data = None
        if fields is not None:
            data = object_data(
                field_object_id,
                field_type,
                {"id": {"id": field_object_id}, "name": name, "value": {"type": value_type, "fields": fields}},
            )
        self.dynamic_fields.setdefault(normalize(parent_id), []).append(
            {"name": name, "objectId": field_object_id, "objectType": value_type, "data": data}
        )

    def add_event(self, **parsed: Any) -> None:
        self.events.append({"type": EVENT_TYPE, "parsedJson": parsed, "timestampMs": "1717000000000"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def methods_called(self) -> list[str]:
        return [method for method, _ in self.calls]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        params = body["params"]
        self.calls.append((method, params))
        if method in self.http_failures:
            return httpx.Response(status_code=503, request=request)
        if method in self.rpc_failures:
            return httpx.Response(
                status_code=200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": self.rpc_failures[method]}},
                request=request,
            )

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self._delay_for(method, params)
            if delay:
                await asyncio.sleep(delay)
            result = self._dispatch(method, params)
        finally:
            self.in_flight -= 1
        return httpx.Response(status_code=200, json={"jsonrpc": "2.0", "id": body["id"], "result": result}, request=request)

    def _delay_for(self, method: str, params: list[Any]) -> float:
        if method == "suix_getDynamicFieldObject":
            return self.delays.get(_name_key(params[1]), self.delays.get(method, 0.0))
        return self.delays.get(method, 0.0)

    def _dispatch(self, method: str, params: list[Any]) -> Any:
        if method == "sui_getObject":
            data = self.objects.get(normalize(params[0]))
            if data is None:
                return {"error": {"code": "notExists", "object_id": params[0]}}
            return {"data": data}
        if method == "suix_getDynamicFields":
            parent, cursor, limit = params
            entries = self.dynamic_fields.get(normalize(parent), [])
            start = int(cursor) if cursor else 0
            page = entries[start : start + limit]
            has_next = start + limit < len(entries)
            return {
                "data": [
                    {"name": entry["name"], "objectId": entry["objectId"], "objectType": entry["objectType"], "type": "DynamicField"}
                    for entry in page
                ],
                "nextCursor": str(start + limit) if has_next else None,
                "hasNextPage": has_next,
            }
        if method == "suix_getDynamicFieldObject":
            parent, name = params
            for entry in self.dynamic_fields.get(normalize(parent), []):
                if _name_key(entry["name"]) == _name_key(name) and entry["data"] is not None:
                    return {"data": entry["data"]}
            return {"error": {"code": "dynamicFieldNotFound", "parent_object_id": parent}}
        if method == "suix_queryEvents":
            query, _cursor, limit, descending = params
            matching = [event for event in self.events if event["type"] == query["MoveEventType"]]
            if not descending:
                matching = list(reversed(matching))
            return {"data": matching[:limit], "nextCursor": None, "hasNextPage": False}
        if method == "suix_getOwnedObjects":
            owner, query, cursor, limit = params
            objects = self.owned.get(normalize(owner), [])
            struct_type = (query.get("filter") or {}).get("StructType")
            if struct_type:
                objects = [obj for obj in objects if obj["type"] == struct_type]
            start = int(cursor) if cursor else 0
            page = objects[start : start + limit]
            has_next = start + limit < len(objects)
            return {
                "data": [{"data": obj} for obj in page],
                "nextCursor": str(start + limit) if has_next else None,
                "hasNextPage": has_next,
            }
        raise AssertionError(f"unexpected rpc method {method}")


def _name_key(name: Any) -> str:
    if isinstance(name, dict) and "value" in name:
        return str(name["value"])
    return json.dumps(name, sort_keys=True) if isinstance(name, dict) else str(name)


def make_config(**overrides: Any) -> ResolverConfig:
    values: dict[str, Any] = {
        "record_type": PROJECT_TYPE,
        "creation_event_type": EVENT_TYPE,
        "table_field_name": "projects",
        "fetch_concurrency": 4,
    }
    values.update(overrides)
    return ResolverConfig(**values)


@pytest.fixture
def sui_node() -> FakeSuiNode:
    return FakeSuiNode()


@pytest.fixture
def make_resolver() -> Callable[..., ProjectResolver]:
    def factory(http: httpx.AsyncClient, **overrides: Any) -> ProjectResolver:
        return ProjectResolver(LedgerClient(RPC_URL, client=http), make_config(**overrides))

    return factory
