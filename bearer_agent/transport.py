"""
Transport httpx instrumentado
Aplica a lista de domínios bloqueados, duplica bodies de request/response e
entrega a telemetria sanitizada ao collector sem atrasar a resposta.
"""
import re
import time
from functools import partial
from typing import Optional, Tuple

import httpx
import structlog

from .config_cache import ConfigCache, fetch_config
from .dispatcher import ErrorSink, TelemetryDispatcher, TelemetryFault, log_fault
from .errors import BlockedDomainError, DeliveryError, SanitizationError
from .metrics import BLOCKED_REQUESTS, SANITIZATION_TIME, PerformanceTimer
from .models import AgentConfig, CapturedExchange, Record, RECORD_TYPE_REQUEST_END, collapse_headers
from .sanitizer import RecordSanitizer, SanitizerRules
from .settings import AgentSettings
from .shipper import RecordShipper

logger = structlog.get_logger(__name__)

PARSEABLE_CONTENT_TYPE = re.compile(r"json|text|xml|x-www-form-urlencoded", re.IGNORECASE)


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def is_parseable(content_type: Optional[str]) -> bool:
    return bool(content_type) and PARSEABLE_CONTENT_TYPE.search(content_type) is not None


def decode_body(raw: bytes, headers: httpx.Headers, encoded: bool = True) -> str:
    """Decodifica um body (content-encoding e charset) sem tocar no original"""
    if not encoded:
        headers = httpx.Headers([
            (key, value) for key, value in headers.multi_items() if key != 'content-encoding'
        ])
    copy = httpx.Response(200, headers=headers, stream=httpx.ByteStream(raw))
    copy.read()
    return copy.text


def build_record(exchange: CapturedExchange) -> Record:
    """Monta o record bruto (ainda não sanitizado) de uma request"""
    request = exchange.request
    response = exchange.response

    request_body = ""
    if exchange.request_body is not None and is_parseable(request.headers.get('content-type')):
        request_body = decode_body(exchange.request_body, request.headers)

    response_body = ""
    if response is not None and exchange.response_body is not None:
        response_body = decode_body(exchange.response_body, response.headers, exchange.response_body_encoded)

    return Record(
        protocol=request.url.scheme,
        path=request.url.path,
        hostname=request.url.host,
        method=request.method,
        started_at=exchange.started_at,
        ended_at=exchange.ended_at,
        type=RECORD_TYPE_REQUEST_END,
        status_code=response.status_code if response is not None else 0,
        url=str(request.url),
        request_headers=collapse_headers(request.headers),
        request_body=request_body,
        response_headers=collapse_headers(response.headers) if response is not None else None,
        response_body=response_body,
    )


def duplicate_response(response: httpx.Response) -> Tuple[httpx.Response, bytes, bool]:
    """Lê o body bruto e devolve uma response nova sobre o mesmo buffer.

    Responses criadas com ``content=`` já chegam com o body em memória e
    podem ser relidas; nesse caso a própria response é devolvida junto com
    o conteúdo já decodificado.
    """
    if response.is_stream_consumed:
        return response, response.content, False

    raw = b"".join(response.iter_raw())
    duplicate = httpx.Response(
        status_code=response.status_code,
        headers=response.headers,
        stream=httpx.ByteStream(raw),
        extensions=response.extensions,
    )
    return duplicate, raw, True


class AgentTransport(httpx.BaseTransport):
    """Wrapper de um transport httpx com blocklist e telemetria.

    Uso::

        transport = AgentTransport(secret_key="sk_...")
        client = httpx.Client(transport=transport)

    Sem secret key a telemetria fica desabilitada e as requests passam direto
    pelo transport original, sem cópia de bodies.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        *,
        settings: Optional[AgentSettings] = None,
        collector_transport: Optional[httpx.BaseTransport] = None,
        config_cache: Optional[ConfigCache] = None,
        sanitizer: Optional[RecordSanitizer] = None,
        error_sink: ErrorSink = log_fault,
        logger=logger,
    ):
        self.settings = settings or AgentSettings()
        self.secret_key = secret_key if secret_key is not None else self.settings.secret_key
        self.logger = logger

        self._transport = transport or httpx.HTTPTransport()
        self.collector = httpx.Client(
            transport=collector_transport or httpx.HTTPTransport(),
            timeout=self.settings.timeout,
        )

        self.config_cache = config_cache or ConfigCache(
            self.fetch_config,
            refresh_interval=self.settings.refresh_config_every,
            logger=logger,
        )
        self.sanitizer = sanitizer or RecordSanitizer(
            SanitizerRules(
                recursive=self.settings.recursive_redaction,
                legacy_url_compat=self.settings.legacy_url_compat,
            )
        )

        self.shipper = RecordShipper(self.collector, self.secret_key, self.settings.logs_url)
        self.dispatcher = TelemetryDispatcher(
            self._process_exchange,
            max_queue_size=self.settings.telemetry_queue_size,
            workers=self.settings.telemetry_workers,
            error_sink=error_sink,
        )

    @property
    def telemetry_enabled(self) -> bool:
        return self.secret_key != ""

    def fetch_config(self) -> AgentConfig:
        """Busca uma configuração nova, sem passar pelo cache"""
        return fetch_config(self.collector, self.secret_key, self.settings.config_url)

    def config(self) -> Optional[AgentConfig]:
        """Configuração em uso; só busca no collector quando há secret key"""
        if self.telemetry_enabled:
            return self.config_cache.get()
        return self.config_cache.current

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        config = self.config()
        hostname = request.url.host
        if config is not None and config.is_blocked(hostname):
            BLOCKED_REQUESTS.inc()
            self.logger.info("Request bloqueada", hostname=hostname)
            raise BlockedDomainError(hostname, request=request)

        if not self.telemetry_enabled:
            return self._transport.handle_request(request)

        # read() troca o stream por um ByteStream sobre o mesmo buffer
        request_body = request.read()
        capture = partial(CapturedExchange, request=request, request_body=request_body)

        started_at = now_ms()
        try:
            response = self._transport.handle_request(request)
        except Exception as e:
            self._submit(capture(started_at=started_at, ended_at=now_ms(), error=e))
            raise
        ended_at = now_ms()

        response_body = None
        response_body_encoded = True
        if is_parseable(response.headers.get('content-type')):
            try:
                response, response_body, response_body_encoded = duplicate_response(response)
            except Exception as e:
                self._submit(capture(started_at=started_at, ended_at=ended_at, response=response, error=e))
                raise

        self._submit(capture(
            started_at=started_at,
            ended_at=ended_at,
            response=response,
            response_body=response_body,
            response_body_encoded=response_body_encoded,
        ))
        return response

    def _submit(self, exchange: CapturedExchange) -> None:
        try:
            self.dispatcher.submit(exchange)
        except Exception as e:
            self.dispatcher.report(TelemetryFault(stage="dispatch", error=e, hostname=exchange.request.url.host))

    def _process_exchange(self, exchange: CapturedExchange) -> None:
        """Executado nos workers: monta, sanitiza e envia o record"""
        hostname = exchange.request.url.host

        try:
            record = build_record(exchange)
        except Exception as e:
            self.dispatcher.report(TelemetryFault(stage="build", error=e, hostname=hostname))
            return

        try:
            with PerformanceTimer(SANITIZATION_TIME):
                record = self.sanitizer.sanitize(record)
        except SanitizationError as e:
            # Nunca enviar um record cuja URL não foi sanitizada por completo
            self.dispatcher.report(TelemetryFault(stage="sanitize", error=e, hostname=hostname))
            return

        try:
            self.shipper.ship([record])
        except DeliveryError as e:
            self.dispatcher.report(TelemetryFault(stage="ship", error=e, hostname=hostname))

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Aguarda o envio da telemetria pendente"""
        return self.dispatcher.flush(timeout)

    def close(self) -> None:
        self.dispatcher.close()
        self.config_cache.close()
        self.collector.close()
        self._transport.close()


def init(secret_key: str, **kwargs) -> AgentTransport:
    """Cria um transport instrumentado com as configurações padrão"""
    return AgentTransport(secret_key=secret_key, **kwargs)
