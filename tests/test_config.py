from prooflane.config import load_config


def test_defaults(tmp_path, monkeypatch):
    for k in ("LEDGER_ENDPOINTS", "ATTEST_MAX_ATTEMPTS", "VERIFIER_URLS", "STRUCTURAL_STARK", "SESSION_STORE"):
        monkeypatch.delenv(k, raising=False)
    cfg = load_config(str(tmp_path / "absent.yml"))
    assert cfg.max_attempts == 4
    assert cfg.ledger_endpoints == []
    assert cfg.structural_stark is True
    assert cfg.session_store == "memory"


def test_yaml_then_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "pipeline.yml"
    path.write_text("max_attempts: 7\nattest_timeout: 5\nverifier_urls:\n  plonk: http://plonk\n")
    monkeypatch.setenv("ATTEST_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("LEDGER_ENDPOINTS", "http://a, http://b,")
    monkeypatch.setenv("STRUCTURAL_STARK", "false")
    monkeypatch.delenv("VERIFIER_URLS", raising=False)
    monkeypatch.delenv("PHASE_TIMEOUT_ATTEST_SEC", raising=False)
    cfg = load_config(str(path))
    assert cfg.max_attempts == 2
    assert cfg.attest_timeout == 5.0
    assert cfg.verifier_urls == {"plonk": "http://plonk"}
    assert cfg.ledger_endpoints == ["http://a", "http://b"]
    assert cfg.structural_stark is False


def test_verifier_urls_env(tmp_path, monkeypatch):
    monkeypatch.setenv("VERIFIER_URLS", "Groth16=http://g, junk, stark=http://s")
    cfg = load_config(str(tmp_path / "absent.yml"))
    assert cfg.verifier_urls == {"groth16": "http://g", "stark": "http://s"}
