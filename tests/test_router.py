from types import SimpleNamespace

import pytest

from formbot.config_loader import AIConfig
from formbot.router import Router, RouterError


def _response(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
    )


def test_unconfigured_router_is_unavailable():
    router = Router(AIConfig())
    assert router.available is False
    with pytest.raises(RouterError):
        router.complete_json("system", "user")


def test_completion_is_sent_to_azure_deployment(monkeypatch):
    calls = []

    def completion(**kwargs):
        calls.append(kwargs)
        return _response('{"jsCode": "function f() {}"}')

    monkeypatch.setattr("formbot.router.litellm.completion", completion)
    router = Router(AIConfig(api_key="key"))

    assert router.complete_json("system", "user") == {"jsCode": "function f() {}"}
    assert calls[0]["model"] == "azure/gpt-4.1-garage-week"
    assert calls[0]["api_version"] == "2024-12-01-preview"
    assert calls[0]["response_format"] == {"type": "json_object"}
    assert calls[0]["messages"][0] == {"role": "system", "content": "system"}
    assert router.usage.summary() == {"total_tokens": 15, "call_count": 1, "failures": 0}


def test_fenced_json_is_accepted(monkeypatch):
    router = Router(AIConfig(api_key="key"))
    monkeypatch.setattr(router, "_complete", lambda messages: '```json\n{"fixedCode": "x"}\n```')
    assert router.complete_json("s", "u") == {"fixedCode": "x"}


@pytest.mark.parametrize("content", ["not json", "[1, 2]"])
def test_bad_content_raises(monkeypatch, content):
    router = Router(AIConfig(api_key="key"))
    monkeypatch.setattr(router, "_complete", lambda messages: content)

    with pytest.raises(RouterError):
        router.complete_json("s", "u")
    assert router.usage.failures == 1


def test_transport_failure_raises_router_error(monkeypatch):
    def completion(**kwargs):
        raise RuntimeError("503 from endpoint")

    monkeypatch.setattr("formbot.router.litellm.completion", completion)
    router = Router(AIConfig(api_key="key"))

    with pytest.raises(RouterError):
        router.complete_json("s", "u")
