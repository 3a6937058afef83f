import json

import structlog

from enrichment_orchestrator.logging import configure_logging, redact, truncate


def test_redact_masks_sensitive_keys_and_known_secrets():
    event = {
        "event": "tool_call",
        "api_key": "abc",
        "refresh_token": "xyz",
        "headers": {"Authorization": "Bearer sk-verylongtoken"},
        "arguments": {"keywords": ["a"], "note": "key is s3cr3t-value"},
        "max_tokens": 100,
    }
    out = redact(event, secrets=["s3cr3t-value"])
    assert out["api_key"] == "[REDACTED]"
    assert out["refresh_token"] == "[REDACTED]"
    assert out["headers"]["Authorization"] == "[REDACTED]"
    assert out["arguments"]["keywords"] == ["a"]
    assert out["arguments"]["note"] == "key is [REDACTED]"
    assert out["max_tokens"] == 100


def test_bearer_values_are_masked_inside_free_text():
    assert redact("upstream said: Bearer abcdef123456", secrets=[]) == "upstream said: Bearer [REDACTED]"


def test_configure_logging_redacts_rendered_events(capsys):
    configure_logging(level="INFO", fmt="json", secrets=["topsecret"])
    structlog.get_logger().info("provider_settings_resolved", base_url="http://topsecret.lan", api_key="k")
    line = capsys.readouterr().out.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["event"] == "provider_settings_resolved"
    assert payload["api_key"] == "[REDACTED]"
    assert "topsecret" not in line


def test_truncate_shortens_long_strings_only():
    long_answer = "x" * 30
    out = truncate({"content": long_answer, "meta": {"short": "ok", "items": [long_answer]}, "n": 5}, max_chars=10)
    assert out["content"] == "xxxxxxxxxx...[+20 chars]"
    assert out["meta"] == {"short": "ok", "items": ["xxxxxxxxxx...[+20 chars]"]}
    assert out["n"] == 5


def test_configure_logging_truncates_values_but_not_the_event(capsys):
    configure_logging(level="INFO", fmt="json", max_value_chars=8)
    structlog.get_logger().info("provider_response_received_in_full", content="y" * 50)
    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["event"] == "provider_response_received_in_full"
    assert payload["content"] == "yyyyyyyy...[+42 chars]"


def test_secrets_are_redacted_before_truncation(capsys):
    configure_logging(level="INFO", fmt="json", secrets=["abcdefghijkl"], max_value_chars=12)
    structlog.get_logger().info("upstream_error", body="abcdefghijkl trailing")
    line = capsys.readouterr().out.strip().splitlines()[-1]
    assert "abcdefgh" not in line
    assert json.loads(line)["body"].startswith("[REDACTED]")
