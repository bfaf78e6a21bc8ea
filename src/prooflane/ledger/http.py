"""HTTP ledger access point.

Protocol
--------
- ``GET  {base}/attestations/{fingerprint}`` -> ``{"attested": bool}``
- ``POST {base}/attestations`` with ``{"fingerprint", "attestor", "signature_b64"}``
  -> ``{"receipt_id": "0x..."}``; the signature is Ed25519 over the canonical
  JSON of ``{"fingerprint", "attestor"}``.
- ``GET  {base}/receipts/{receipt_id}`` -> ``{"confirmed": bool}``

Status mapping: 401/403 unauthorized, 400/422 malformed, 409 duplicate (all
permanent); 429, 5xx and transport failures are transient.
"""
from __future__ import annotations

from typing import List, Optional

import httpx
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..crypto.keys import public_key_b64, sign_request
from .errors import PermanentKind, PermanentLedgerError, TransientLedgerError

_PERMANENT_STATUS = {
    401: PermanentKind.UNAUTHORIZED,
    403: PermanentKind.UNAUTHORIZED,
    400: PermanentKind.MALFORMED,
    422: PermanentKind.MALFORMED,
    409: PermanentKind.DUPLICATE,
}


def _raise_for_ledger_status(resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return
    try:
        payload = resp.json()
        detail = str(payload.get("detail", "")) if isinstance(payload, dict) else ""
    except ValueError:
        detail = resp.text[:200]
    kind = _PERMANENT_STATUS.get(resp.status_code)
    if kind is not None:
        raise PermanentLedgerError(kind, f"{resp.status_code} {detail}".strip())
    raise TransientLedgerError(f"ledger responded {resp.status_code} {detail}".strip())


class HttpLedgerEndpoint:
    def __init__(
        self,
        base_url: str,
        signing_key: Ed25519PrivateKey,
        *,
        name: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.name = name or self.base_url
        self._key = signing_key
        self._attestor = public_key_b64(signing_key)
        self._own_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.TimeoutException as e:
            raise TransientLedgerError(f"timeout talking to {self.name}: {e}") from e
        except httpx.TransportError as e:
            raise TransientLedgerError(f"connection error talking to {self.name}: {e}") from e
        _raise_for_ledger_status(resp)
        return resp

    async def exists(self, fingerprint: str) -> bool:
        resp = await self._request("GET", f"/attestations/{fingerprint}")
        return bool(resp.json().get("attested", False))

    async def submit(self, fingerprint: str) -> str:
        fields = {"fingerprint": fingerprint, "attestor": self._attestor}
        body = dict(fields, signature_b64=sign_request(self._key, fields))
        resp = await self._request("POST", "/attestations", json=body)
        receipt_id = resp.json().get("receipt_id")
        if not receipt_id:
            raise TransientLedgerError(f"{self.name} accepted submission without a receipt id")
        return str(receipt_id)

    async def confirm(self, receipt_id: str) -> bool:
        resp = await self._request("GET", f"/receipts/{receipt_id}")
        return bool(resp.json().get("confirmed", False))

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()


def endpoints_from_config(cfg, signing_key: Ed25519PrivateKey) -> List[HttpLedgerEndpoint]:
    return [
        HttpLedgerEndpoint(url, signing_key, name=f"ledger-{i}", timeout=cfg.submit_timeout)
        for i, url in enumerate(cfg.ledger_endpoints)
    ]


__all__ = ["HttpLedgerEndpoint", "endpoints_from_config"]
