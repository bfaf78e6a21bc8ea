from __future__ import annotations

import argparse
import asyncio
import hashlib
import json
from pathlib import Path

from .attest.submitter import AttestationSubmitter, RetryPolicy
from .config import load_config
from .crypto.keys import ensure_attestor_key
from .envelope.codec import KEY_COMMITMENT_LEN, DecodeError, ProofEnvelope, ProofSystem, decode, encode
from .envelope.statement import decode_statement
from .ledger.http import endpoints_from_config
from .ledger.memory import InMemoryLedger
from .verify.capabilities import capabilities_from_config
from .verify.cost import estimate_gas
from .verify.dispatcher import VerifierDispatcher
from .workflow.events import EventChannel
from .workflow.orchestrator import build_orchestrator
from .workflow.session import Phase, Session
from .workflow.sources import DirectoryCandidateSource
from .workflow.store import InMemorySessionStore


def cmd_pack(args: argparse.Namespace) -> int:
    if args.key_commitment:
        key = bytes.fromhex(args.key_commitment.removeprefix("0x"))
        if len(key) != KEY_COMMITMENT_LEN:
            print(f"--key-commitment must be {KEY_COMMITMENT_LEN} bytes of hex")
            return 2
    else:
        key = hashlib.sha256(Path(args.vk_file).read_bytes()).digest()
    env = ProofEnvelope(
        proof_system=ProofSystem.from_label(args.system),
        program_id=args.program_id,
        key_commitment=key,
        proof_payload=Path(args.proof).read_bytes(),
        public_inputs=Path(args.inputs).read_bytes() if args.inputs else b"",
    )
    buf = encode(env)
    Path(args.output).write_bytes(buf)
    print(f"wrote {args.output} ({len(buf)} bytes) fingerprint {env.fingerprint}")
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    try:
        env = decode(Path(args.input).read_bytes())
    except DecodeError as e:
        print(json.dumps({"ok": False, "error": e.reason}))
        return 1
    info = {
        "ok": True,
        "version": env.version,
        "proof_system": env.proof_system.label,
        "program_id": env.program_id,
        "key_commitment": "0x" + env.key_commitment.hex(),
        "proof_len": len(env.proof_payload),
        "inputs_len": len(env.public_inputs),
        "fingerprint": env.fingerprint,
        "gas_estimate": estimate_gas(env),
    }
    try:
        st = decode_statement(env.public_inputs)
        info["statement"] = {
            "merkle_root": "0x" + st.merkle_root.hex(),
            "public_key": "0x" + st.public_key.hex(),
            "nullifier": "0x" + st.nullifier.hex(),
            "value": str(st.value),
            "extra_len": len(st.extra),
        }
    except DecodeError:
        pass
    print(json.dumps(info, indent=2))
    return 0


async def _run_workflow(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    if args.local_ledger:
        endpoints = [InMemoryLedger().endpoint("local")]
    else:
        if not cfg.ledger_endpoints:
            print("no ledger endpoints configured (set LEDGER_ENDPOINTS or use --local-ledger)")
            return 2
        endpoints = endpoints_from_config(cfg, ensure_attestor_key(cfg.attestor_signing_key))
    session = Session(kind=args.kind)
    channel = EventChannel(cfg.event_channel_size)
    dispatcher = VerifierDispatcher(capabilities_from_config(cfg), call_timeout=cfg.verify_call_timeout)
    orch = build_orchestrator(
        cfg,
        session,
        DirectoryCandidateSource(args.dir or cfg.candidate_dir),
        dispatcher,
        AttestationSubmitter(endpoints, RetryPolicy.from_config(cfg)),
        InMemorySessionStore(ttl=cfg.session_ttl),
        channel=channel,
    )
    task = asyncio.create_task(orch.run())
    async for event in channel:
        print(event.model_dump_json())
    summary = await task
    for ep in endpoints:
        close = getattr(ep, "aclose", None)
        if close is not None:
            await close()
    dispatcher.close()
    print(summary.model_dump_json(indent=2, exclude={"log"}))
    return 0 if summary.phase == Phase.COMPLETE else 1


def cmd_run(args: argparse.Namespace) -> int:
    return asyncio.run(_run_workflow(args))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser("prooflane")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_pack = sub.add_parser("pack")
    p_pack.add_argument("--system", choices=[s.label for s in ProofSystem], required=True)
    p_pack.add_argument("--program-id", dest="program_id", type=int, default=0)
    key = p_pack.add_mutually_exclusive_group(required=True)
    key.add_argument("--key-commitment", dest="key_commitment")
    key.add_argument("--vk-file", dest="vk_file")
    p_pack.add_argument("--proof", required=True)
    p_pack.add_argument("--inputs")
    p_pack.add_argument("--output", required=True)
    p_pack.set_defaults(func=cmd_pack)

    p_ins = sub.add_parser("inspect")
    p_ins.add_argument("--input", required=True)
    p_ins.set_defaults(func=cmd_inspect)

    p_run = sub.add_parser("run")
    p_run.add_argument("--dir")
    p_run.add_argument("--kind", choices=["all"] + [s.label for s in ProofSystem], default="all")
    p_run.add_argument("--config")
    p_run.add_argument("--local-ledger", dest="local_ledger", action="store_true")
    p_run.set_defaults(func=cmd_run)

    args = p.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
