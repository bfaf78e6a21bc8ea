"""HTTP face of ``InMemoryLedger`` speaking the ``HttpLedgerEndpoint`` protocol.

Mounted by the app when ``LEDGER_EMULATOR=true`` and used by the tests to
exercise the HTTP endpoint without a real chain.
"""
from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..crypto.keys import verify_request
from ..envelope.codec import is_fingerprint
from .errors import PermanentKind, PermanentLedgerError
from .memory import InMemoryLedger

_STATUS = {
    PermanentKind.UNAUTHORIZED: 401,
    PermanentKind.MALFORMED: 400,
    PermanentKind.DUPLICATE: 409,
}


def build_ledger_router(ledger: InMemoryLedger, prefix: str = "/ledger") -> APIRouter:
    router = APIRouter(prefix=prefix, tags=["ledger"])

    @router.get("/attestations/{fingerprint}")
    async def get_attestation(fingerprint: str):
        if not is_fingerprint(fingerprint):
            return JSONResponse({"detail": "malformed fingerprint"}, status_code=400)
        return JSONResponse({"fingerprint": fingerprint, "attested": ledger.is_attested(fingerprint)})

    @router.post("/attestations")
    async def post_attestation(body: dict):
        fingerprint = body.get("fingerprint")
        attestor = body.get("attestor")
        sig = body.get("signature_b64")
        if not isinstance(fingerprint, str) or not isinstance(attestor, str) or not isinstance(sig, str):
            return JSONResponse({"detail": "missing fingerprint, attestor or signature_b64"}, status_code=400)
        if not verify_request(attestor, sig, {"fingerprint": fingerprint, "attestor": attestor}):
            return JSONResponse({"detail": "bad attestor signature"}, status_code=401)
        try:
            receipt_id = ledger.record(fingerprint, attestor)
        except PermanentLedgerError as e:
            return JSONResponse({"detail": str(e)}, status_code=_STATUS[e.kind])
        return JSONResponse({"receipt_id": receipt_id})

    @router.get("/receipts/{receipt_id}")
    async def get_receipt(receipt_id: str):
        try:
            confirmed = ledger.poll(receipt_id)
        except PermanentLedgerError:
            return JSONResponse({"detail": "receipt not found"}, status_code=404)
        return JSONResponse({"receipt_id": receipt_id, "confirmed": confirmed})

    return router


__all__ = ["build_ledger_router"]
