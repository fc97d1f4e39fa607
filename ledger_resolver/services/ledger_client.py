from __future__ import annotations

from dataclasses import dataclass, field
import itertools
import logging
from typing import Any, Protocol

import httpx

from ledger_resolver.core.ids import looks_like_object_id

logger = logging.getLogger(__name__)

OBJECT_OPTIONS = {"showContent": True, "showType": True, "showOwner": True}
MISSING_OBJECT_CODES = {"notExists", "deleted", "dynamicFieldNotFound"}


class ResolutionError(Exception):
    """Base resolution error."""


class LedgerTransportError(ResolutionError):
    """Raised when the ledger RPC call itself fails; never treated as absence."""

    def __init__(self, message: str, *, method: str | None = None, code: int | None = None) -> None:
        super().__init__(message)
        self.method = method
        self.code = code


@dataclass(slots=True)
class LedgerObject:
    object_id: str
    type: str | None
    content: dict[str, Any]
    owner: str | None = None


@dataclass(slots=True)
class TableEntry:
    enumeration_key: Any
    value_ref: str | None
    object_type: str | None = None


@dataclass(slots=True)
class EntryPage:
    entries: list[TableEntry] = field(default_factory=list)
    next_cursor: str | None = None
    has_next_page: bool = False


@dataclass(slots=True)
class OwnedPage:
    objects: list[LedgerObject] = field(default_factory=list)
    next_cursor: str | None = None
    has_next_page: bool = False


class LedgerReader(Protocol):
    async def get_object_by_key(self, key: str) -> LedgerObject | None: ...

    async def get_container_handle(self, container_object_id: str) -> LedgerObject | None: ...

    async def list_entries(self, handle_id: str, page_size: int, cursor: str | None = None) -> EntryPage: ...

    async def get_entry_value(self, handle_id: str, enumeration_key: Any) -> LedgerObject | None: ...

    async def query_creation_events(
        self,
        event_type: str,
        limit: int,
        *,
        descending: bool = True,
    ) -> list[dict[str, Any]]: ...

    async def list_owned_objects(
        self,
        owner_id: str,
        type_filter: str | None = None,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> OwnedPage: ...


class LedgerClient:
    """JSON-RPC reader for a Sui-style full node."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._request_ids = itertools.count(1)

    async def get_object_by_key(self, key: str) -> LedgerObject | None:
        if not looks_like_object_id(key):
            return None
        result = await self._call("sui_getObject", [key.strip(), OBJECT_OPTIONS])
        return _parse_object_response(result)

    async def get_container_handle(self, container_object_id: str) -> LedgerObject | None:
        return await self.get_object_by_key(container_object_id)

    async def list_entries(self, handle_id: str, page_size: int, cursor: str | None = None) -> EntryPage:
        result = await self._call("suix_getDynamicFields", [handle_id, cursor, page_size])
        if not isinstance(result, dict):
            return EntryPage()
        entries = [
            TableEntry(
                enumeration_key=item.get("name"),
                value_ref=_as_text(item.get("objectId")),
                object_type=_as_text(item.get("objectType")),
            )
            for item in result.get("data") or []
            if isinstance(item, dict)
        ]
        return EntryPage(
            entries=entries,
            next_cursor=_as_text(result.get("nextCursor")),
            has_next_page=bool(result.get("hasNextPage")),
        )

    async def get_entry_value(self, handle_id: str, enumeration_key: Any) -> LedgerObject | None:
        if isinstance(enumeration_key, int) and not isinstance(enumeration_key, bool):
            name: Any = {"type": "u64", "value": str(enumeration_key)}
        else:
            name = enumeration_key
        result = await self._call("suix_getDynamicFieldObject", [handle_id, name])
        return _parse_object_response(result)

    async def query_creation_events(
        self,
        event_type: str,
        limit: int,
        *,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        result = await self._call("suix_queryEvents", [{"MoveEventType": event_type}, None, limit, descending])
        if not isinstance(result, dict):
            return []
        return [item for item in result.get("data") or [] if isinstance(item, dict)]

    async def list_owned_objects(
        self,
        owner_id: str,
        type_filter: str | None = None,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> OwnedPage:
        query: dict[str, Any] = {"options": OBJECT_OPTIONS}
        # The node only accepts fully qualified struct types as a filter.
        if type_filter and type_filter.count("::") == 2:
            query["filter"] = {"StructType": type_filter}
        result = await self._call("suix_getOwnedObjects", [owner_id, query, cursor, limit])
        if not isinstance(result, dict):
            return OwnedPage()
        objects = [
            parsed
            for parsed in (_parse_object_response(item) for item in result.get("data") or [])
            if parsed is not None
        ]
        return OwnedPage(
            objects=objects,
            next_cursor=_as_text(result.get("nextCursor")),
            has_next_page=bool(result.get("hasNextPage")),
        )

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        try:
            if self._client is not None:
                response = await self._client.post(self.rpc_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise LedgerTransportError(f"{method} failed: {exc}", method=method) from exc
        except ValueError as exc:
            raise LedgerTransportError(f"{method} returned a non-JSON body", method=method) from exc

        if not isinstance(body, dict):
            raise LedgerTransportError(f"{method} returned an unexpected body", method=method)
        error = body.get("error")
        if error is not None:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LedgerTransportError(
                f"{method} rpc error: {message}",
                method=method,
                code=code if isinstance(code, int) else None,
            )
        logger.debug("ledger rpc ok method=%s id=%s", method, payload["id"])
        return body.get("result")


def _parse_object_response(result: Any) -> LedgerObject | None:
    if not isinstance(result, dict):
        return None
    error = result.get("error")
    if isinstance(error, dict):
        if error.get("code") in MISSING_OBJECT_CODES:
            return None
        raise LedgerTransportError(f"object read failed: {error}")
    data = result.get("data")
    if not isinstance(data, dict):
        return None
    object_id = _as_text(data.get("objectId"))
    if not object_id:
        return None
    content = data.get("content")
    return LedgerObject(
        object_id=object_id,
        type=_as_text(data.get("type")) or (_as_text(content.get("type")) if isinstance(content, dict) else None),
        content=content if isinstance(content, dict) else {},
        owner=_parse_owner(data.get("owner")),
    )


def _parse_owner(raw: Any) -> str | None:
    if isinstance(raw, dict):
        for key in ("AddressOwner", "ObjectOwner"):
            value = _as_text(raw.get(key))
            if value:
                return value
    return None


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
