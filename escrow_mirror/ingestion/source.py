"""
Event source client: reads escrow contract logs from an Ethereum JSON-RPC node.

Only two RPC methods are used, `eth_blockNumber` for the tip and `eth_getLogs`
filtered by contract address and event topic. Every transport or protocol
failure is raised as `EventSourceError`, which the ingestion loop treats as
transient. The client never writes anything.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol, runtime_checkable

import httpx

from escrow_mirror.domain.ids import normalize_address
from escrow_mirror.domain.models import EventKind
from escrow_mirror.errors import EventSourceError
from escrow_mirror.ingestion.decoder import event_topic


@dataclass(frozen=True)
class RawEvent:
    """An undecoded log entry tagged with the event kind it was queried for."""

    kind: EventKind
    log: Mapping[str, Any]


@runtime_checkable
class EventSource(Protocol):
    """
    Read-only access to the ledger's event log.

    Results of `query_events` come back in arrival order; callers must merge
    and sort before applying.
    """

    async def get_tip(self) -> int:
        ...

    async def query_events(self, kind: EventKind, from_block: int, to_block: int) -> List[RawEvent]:
        ...


class JsonRpcEventSource:
    """
    Fetch escrow events over HTTP JSON-RPC using a shared httpx.AsyncClient.

    Parameters
    ----------
    rpc_url : str
        Node endpoint.
    contract_address : str
        Escrow contract whose logs are read.
    timeout : float
        Per-request timeout in seconds.
    client : httpx.AsyncClient, optional
        Pre-built client (tests inject one with a MockTransport).
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.contract_address = normalize_address(contract_address)
        self._timeout = timeout
        self._client = client
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "JsonRpcEventSource":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._get_client().post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EventSourceError(f"{method} request failed: {exc}") from exc

        if not isinstance(body, dict):
            raise EventSourceError(f"{method} returned a non-object response")
        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise EventSourceError(
                    f"{method} failed with code {error.get('code')}: {error.get('message')}"
                )
            raise EventSourceError(f"{method} failed: {error}")
        if "result" not in body:
            raise EventSourceError(f"{method} response has no result")
        return body["result"]

    async def get_tip(self) -> int:
        result = await self._call("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as exc:
            raise EventSourceError(f"eth_blockNumber returned {result!r}") from exc

    async def query_events(self, kind: EventKind, from_block: int, to_block: int) -> List[RawEvent]:
        log_filter = {
            "address": self.contract_address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": [event_topic(kind)],
        }
        result = await self._call("eth_getLogs", [log_filter])
        if not isinstance(result, list):
            raise EventSourceError(f"eth_getLogs returned {type(result).__name__}, expected list")
        return [RawEvent(kind=kind, log=entry) for entry in result]


__all__ = ["EventSource", "JsonRpcEventSource", "RawEvent"]
