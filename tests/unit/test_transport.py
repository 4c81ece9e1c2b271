#!/usr/bin/env python3
"""
Testes unitários para o transport instrumentado.
"""

import gzip
import json
import threading

import httpx
import pytest

from bearer_agent import init
from bearer_agent.errors import BlockedDomainError, SanitizationError
from bearer_agent.models import AgentConfig
from bearer_agent.sanitizer import RecordSanitizer
from bearer_agent.settings import AgentSettings
from bearer_agent.transport import AgentTransport, is_parseable


class CollectorStub:
    """Simula os endpoints de config e logs do collector."""

    def __init__(self, blocked=(), config_status=200, logs_status=200):
        self.blocked = list(blocked)
        self.config_status = config_status
        self.logs_status = logs_status
        self.config_requests = 0
        self.payloads = []
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/config":
            with self._lock:
                self.config_requests += 1
            return httpx.Response(self.config_status, json={"blockedDomains": self.blocked})
        with self._lock:
            self.payloads.append(json.loads(request.content))
        return httpx.Response(self.logs_status, json={})

    @property
    def records(self):
        return [record for payload in self.payloads for record in payload["logs"]]


class Upstream:
    """Servidor de destino simulado."""

    def __init__(self, respond=None):
        self.respond = respond or (lambda request: httpx.Response(200, text="200 OK"))
        self.bodies = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(request.content)
        return self.respond(request)


class TestAgentTransport:
    """Testes para a classe AgentTransport."""

    def setup_method(self):
        """Configuração para cada teste."""
        self.collector = CollectorStub()
        self.upstream = Upstream()
        self.faults = []
        self.clients = []

    def teardown_method(self):
        for client in self.clients:
            client.close()

    def make_client(self, secret_key: str = "sk_test", **kwargs) -> httpx.Client:
        settings = AgentSettings(secret_key=secret_key, refresh_config_every=60, telemetry_workers=1)
        self.transport = AgentTransport(
            transport=httpx.MockTransport(self.upstream),
            settings=settings,
            collector_transport=httpx.MockTransport(self.collector),
            error_sink=self.faults.append,
            **kwargs
        )
        client = httpx.Client(transport=self.transport)
        self.clients.append(client)
        return client

    def test_unauthenticated_passthrough(self):
        """Testa que sem secret key nada é enviado ao collector."""
        client = self.make_client(secret_key="")

        response = client.get("http://api.example.com/")

        assert response.status_code == 200
        assert response.text == "200 OK"
        assert not self.transport.telemetry_enabled
        assert self.transport.flush(timeout=2.0)
        assert self.collector.config_requests == 0
        assert self.collector.payloads == []

    def test_blocked_domain_with_seeded_config(self):
        """Testa bloqueio com configuração pré-carregada."""
        client = self.make_client(secret_key="")
        self.transport.config_cache.set(AgentConfig(blocked_domains=["localhost", "127.0.0.1"]))

        with pytest.raises(BlockedDomainError) as exc_info:
            client.get("http://localhost:8080/test")

        assert exc_info.value.hostname == "localhost"
        assert isinstance(exc_info.value, httpx.TransportError)
        assert self.upstream.bodies == []

    def test_blocked_domain_from_collector_config(self):
        """Testa bloqueio com configuração buscada no collector."""
        self.collector.blocked = ["blocked.example.com"]
        client = self.make_client()

        with pytest.raises(BlockedDomainError):
            client.get("https://blocked.example.com/x")
        response = client.get("https://allowed.example.com/x")

        assert response.status_code == 200
        assert self.transport.flush(timeout=2.0)
        assert self.collector.config_requests == 1
        assert [record["hostname"] for record in self.collector.records] == ["allowed.example.com"]

    def test_hostname_match_is_exact(self):
        """Testa que subdomínios não são bloqueados."""
        self.collector.blocked = ["example.com"]
        client = self.make_client()

        assert client.get("https://api.example.com/").status_code == 200

    def test_config_failure_blocks_nothing(self):
        """Testa que falha na configuração não bloqueia requests."""
        self.collector.config_status = 500
        client = self.make_client()

        assert client.get("https://api.example.com/").status_code == 200
        assert client.get("https://api.example.com/").status_code == 200

        assert self.transport.flush(timeout=2.0)
        assert self.collector.config_requests == 2
        assert len(self.collector.records) == 2

    def test_record_is_sanitized_and_bodies_are_preserved(self):
        """Testa o record enviado e a transparência dos bodies."""
        response_bytes = b'{"id":1,"token":"t","contact":"ann@example.org"}'
        self.upstream.respond = lambda request: httpx.Response(
            201,
            headers={"Content-Type": "application/json"},
            stream=httpx.ByteStream(response_bytes),
        )
        client = self.make_client()
        payload = {"email": "joe@example.com", "password": "hunter2", "name": "Joe"}

        response = client.post(
            "https://api.example.com/users?api_key=abc",
            json=payload,
            headers={"Authorization": "Bearer xyz"},
        )

        assert response.status_code == 201
        assert response.content == response_bytes
        assert json.loads(self.upstream.bodies[0]) == payload

        assert self.transport.flush(timeout=2.0)
        assert self.faults == []
        [record] = self.collector.records
        assert record["protocol"] == "https"
        assert record["hostname"] == "api.example.com"
        assert record["path"] == "/users"
        assert record["method"] == "POST"
        assert record["type"] == "REQUEST_END"
        assert record["statusCode"] == 201
        assert record["startedAt"] <= record["endedAt"]
        assert record["url"] == "https://api.example.com/users?api_key=%5BFILTERED%5D"
        assert record["requestHeaders"]["Authorization"] == "[FILTERED]"
        assert json.loads(record["requestBody"]) == {
            "email": "[FILTERED].com", "password": "[FILTERED]", "name": "Joe",
        }
        assert json.loads(record["responseBody"]) == {"id": 1, "token": "t", "contact": "[FILTERED].org"}

    def test_gzip_response_round_trip(self):
        """Testa que o body comprimido chega intacto a quem chamou."""
        compressed = gzip.compress(b'{"email":"joe@example.com"}')
        self.upstream.respond = lambda request: httpx.Response(
            200,
            headers={"Content-Type": "application/json", "Content-Encoding": "gzip"},
            stream=httpx.ByteStream(compressed),
        )
        client = self.make_client()

        response = client.get("https://api.example.com/me")

        assert response.json() == {"email": "joe@example.com"}
        assert response.headers["content-encoding"] == "gzip"
        assert self.transport.flush(timeout=2.0)
        assert self.collector.records[0]["responseBody"] == '{"email":"[FILTERED].com"}'

    def test_in_memory_response_body(self):
        """Testa responses que já chegam com o body carregado."""
        self.upstream.respond = lambda request: httpx.Response(200, json={"password": "x"})
        client = self.make_client()

        response = client.get("https://api.example.com/me")

        assert response.json() == {"password": "x"}
        assert self.transport.flush(timeout=2.0)
        assert self.collector.records[0]["responseBody"] == '{"password":"[FILTERED]"}'

    def test_non_parseable_response_body_is_not_captured(self):
        """Testa que bodies binários não entram no record."""
        png = b"\x89PNG\r\n\x1a\n\x00\x00"
        self.upstream.respond = lambda request: httpx.Response(
            200, headers={"Content-Type": "image/png"}, stream=httpx.ByteStream(png),
        )
        client = self.make_client()

        response = client.get("https://cdn.example.com/logo.png")

        assert response.content == png
        assert self.transport.flush(timeout=2.0)
        assert self.collector.records[0]["responseBody"] == ""

    def test_streaming_request_body_round_trip(self):
        """Testa que o body em stream chega idêntico ao transport original."""
        client = self.make_client()

        client.post("https://api.example.com/upload", content=iter([b"abc", b"def"]))

        assert self.upstream.bodies == [b"abcdef"]
        assert self.transport.flush(timeout=2.0)
        assert self.collector.records[0]["requestBody"] == ""

    def test_multi_value_headers_collapse_to_first(self):
        """Testa que apenas o primeiro valor de cada header é enviado."""
        client = self.make_client()

        client.get("https://api.example.com/", headers=[("X-Multi", "a"), ("X-Multi", "b")])

        assert self.transport.flush(timeout=2.0)
        assert self.collector.records[0]["requestHeaders"]["X-Multi"] == "a"

    def test_transport_error_passes_through_unchanged(self):
        """Testa que o erro do transport original não é alterado."""
        errors = []

        def fail(request):
            error = httpx.ConnectError("connection refused", request=request)
            errors.append(error)
            raise error

        self.upstream.respond = fail
        client = self.make_client()

        with pytest.raises(httpx.ConnectError) as exc_info:
            client.get("https://down.example.com/")

        assert exc_info.value is errors[0]
        assert self.transport.flush(timeout=2.0)
        [record] = self.collector.records
        assert record["statusCode"] == 0
        assert record["responseHeaders"] is None

    def test_shipping_failure_is_invisible_to_caller(self):
        """Testa que falha no envio só chega ao error sink."""
        self.collector.logs_status = 500
        client = self.make_client()

        response = client.get("https://api.example.com/")

        assert response.status_code == 200
        assert self.transport.flush(timeout=2.0)
        assert [fault.stage for fault in self.faults] == ["ship"]
        assert self.faults[0].hostname == "api.example.com"

    def test_sanitization_failure_drops_record(self):
        """Testa que um record com URL inválida não é enviado."""
        class FailingSanitizer(RecordSanitizer):
            def sanitize(self, record):
                raise SanitizationError("bad url")

        client = self.make_client(sanitizer=FailingSanitizer())

        assert client.get("https://api.example.com/").status_code == 200
        assert self.transport.flush(timeout=2.0)
        assert [fault.stage for fault in self.faults] == ["sanitize"]
        assert self.collector.payloads == []

    def test_unexpected_telemetry_fault_is_contained(self):
        """Testa que exceções inesperadas na telemetria não chegam a quem chamou."""
        class BrokenSanitizer(RecordSanitizer):
            def sanitize(self, record):
                raise RuntimeError("boom")

        client = self.make_client(sanitizer=BrokenSanitizer())

        assert client.get("https://api.example.com/").status_code == 200
        assert self.transport.flush(timeout=2.0)
        assert [fault.stage for fault in self.faults] == ["task"]
        assert isinstance(self.faults[0].error, RuntimeError)

    def test_fetch_config_is_uncached(self):
        """Testa a busca explícita de configuração."""
        self.collector.blocked = ["a.example.com"]
        self.make_client()

        assert self.transport.fetch_config().blocked_domains == ["a.example.com"]
        assert self.transport.fetch_config().blocked_domains == ["a.example.com"]
        assert self.collector.config_requests == 2

    def test_close_stops_background_work(self):
        """Testa o encerramento do transport."""
        client = self.make_client()
        client.get("https://api.example.com/")

        client.close()

        assert self.transport.dispatcher.closed
        assert len(self.collector.records) == 1


class TestHelpers:
    """Testes para funções auxiliares do transport."""

    @pytest.mark.parametrize("content_type,expected", [
        ("application/json", True),
        ("application/problem+json; charset=utf-8", True),
        ("text/html", True),
        ("application/xml", True),
        ("application/x-www-form-urlencoded", True),
        ("image/png", False),
        ("application/octet-stream", False),
        ("", False),
        (None, False),
    ])
    def test_is_parseable(self, content_type, expected):
        """Testa o filtro de content types capturados."""
        assert is_parseable(content_type) is expected

    def test_init_factory(self):
        """Testa a factory init."""
        transport = init("sk_test", settings=AgentSettings(refresh_config_every=60))
        try:
            assert isinstance(transport, AgentTransport)
            assert transport.secret_key == "sk_test"
            assert transport.telemetry_enabled
        finally:
            transport.close()
