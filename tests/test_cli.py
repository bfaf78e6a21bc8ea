import json

from prooflane.cli import main
from prooflane.envelope.codec import ProofSystem, decode


def _write_proof(tmp_path, name, system="stark", program_id=3):
    proof = tmp_path / f"{name}.proof"
    proof.write_bytes(b"\x42" * 128)
    inputs = tmp_path / f"{name}.inputs"
    inputs.write_bytes(b"\x01" * 64)
    out = tmp_path / "proofs" / f"{name}.upf"
    out.parent.mkdir(exist_ok=True)
    rc = main([
        "pack", "--system", system, "--program-id", str(program_id),
        "--key-commitment", "0x" + "11" * 32,
        "--proof", str(proof), "--inputs", str(inputs), "--output", str(out),
    ])
    assert rc == 0
    return out


def test_pack_then_inspect(tmp_path, capsys):
    out = _write_proof(tmp_path, "p1")
    env = decode(out.read_bytes())
    assert env.proof_system == ProofSystem.STARK
    assert env.program_id == 3
    capsys.readouterr()
    assert main(["inspect", "--input", str(out)]) == 0
    info = json.loads(capsys.readouterr().out)
    assert info["fingerprint"] == env.fingerprint
    assert info["proof_len"] == 128
    assert "statement" not in info


def test_pack_with_vk_file(tmp_path):
    vk = tmp_path / "vk.bin"
    vk.write_bytes(b"verifying key")
    proof = tmp_path / "p.proof"
    proof.write_bytes(b"\x01" * 10)
    out = tmp_path / "p.bin"
    assert main(["pack", "--system", "plonk", "--vk-file", str(vk), "--proof", str(proof), "--output", str(out)]) == 0
    assert decode(out.read_bytes()).public_inputs == b""


def test_inspect_reports_decode_error(tmp_path, capsys):
    bad = tmp_path / "bad.bin"
    bad.write_bytes(b"\x02" + b"\x00" * 60)
    assert main(["inspect", "--input", str(bad)]) == 1
    assert json.loads(capsys.readouterr().out)["ok"] is False


def test_run_against_local_ledger(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("ATTEST_INTER_ITEM_DELAY_SEC", "0")
    monkeypatch.delenv("VERIFIER_URLS", raising=False)
    monkeypatch.delenv("STRUCTURAL_STARK", raising=False)
    _write_proof(tmp_path, "a")
    _write_proof(tmp_path, "b", program_id=4)
    capsys.readouterr()
    rc = main(["run", "--dir", str(tmp_path / "proofs"), "--local-ledger", "--config", str(tmp_path / "none.yml")])
    out = capsys.readouterr().out
    assert rc == 0
    lines = out.splitlines()
    assert json.loads(lines[0])["type"] == "status"
    assert '"type":"complete"' in out
    # identical proof/inputs share a fingerprint: the second is a duplicate of the first
    summary = json.loads(out[out.rindex("\n{") + 1:])
    assert summary["verified"] == 2
    assert summary["attested"] == 1


def test_run_without_endpoints(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("LEDGER_ENDPOINTS", raising=False)
    assert main(["run", "--dir", str(tmp_path), "--config", str(tmp_path / "none.yml")]) == 2
