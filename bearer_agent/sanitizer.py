"""
Módulo de sanitização de dados sensíveis
Remove credenciais e dados pessoais de headers, URL e bodies JSON dos records
"""
import ipaddress
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog

from .errors import SanitizationError
from .models import Record

logger = structlog.get_logger(__name__)

# Nomes de chave cujo valor é sempre substituído inteiro
SENSITIVE_KEYS = (
    r"authorization|password|secret|passwd|api.?key|access.?token|auth.?token"
    r"|credentials|mysql_pwd|stripetoken|card.?number.?|client.?id|client.?secret"
)

# Emails (o último label do domínio não é consumido) e números de cartão
SENSITIVE_VALUES = (
    r"[a-zA-Z0-9][a-zA-Z0-9.!#$%&’*+=?^_`{|}~-]+"
    r"@[a-zA-Z0-9-]+(?:(?:\.[a-zA-Z0-9-]+)*(?=\.[a-zA-Z0-9-]))?"
    r"|(?:\d[ -]*?){13,16}"
)

PLACEHOLDER = "[FILTERED]"

JSON_CONTENT_TYPE = "application/json"

IPVFUTURE_HOST = re.compile(r"\Av[a-fA-F0-9]+\..+\Z")


@dataclass(frozen=True)
class SanitizerRules:
    """Regras de sanitização, construídas uma vez e passadas ao sanitizador"""

    sensitive_keys: Pattern = field(default_factory=lambda: re.compile(SENSITIVE_KEYS, re.IGNORECASE))
    sensitive_values: Pattern = field(default_factory=lambda: re.compile(SENSITIVE_VALUES))
    placeholder: str = PLACEHOLDER
    # Desce em objetos/arrays aninhados; o nível superior se comporta igual
    recursive: bool = False
    # Esvazia a URL quando um valor da query nomeia uma chave redigida na mesma
    # query (comportamento legado)
    legacy_url_compat: bool = True


DEFAULT_RULES = SanitizerRules()


def parse_finite_float(text: str) -> float:
    """parse_float para json.loads que recusa números fora do alcance de float"""
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"número fora do alcance: {text}")
    return value


def reject_constant(name: str):
    raise ValueError(f"constante JSON inválida: {name}")


def check_bracketed_host(netloc: str) -> None:
    """Valida o host entre colchetes (IPv6 ou IPvFuture).

    Levanta ValueError como o urlsplit das versões mais novas do Python, para
    que ``[FILTERED]`` no host seja sempre tratado como URL inválida.
    """
    if '[' not in netloc or ']' not in netloc:
        return

    host = netloc.partition('[')[2].partition(']')[0]
    if host.startswith('v'):
        if not IPVFUTURE_HOST.match(host):
            raise ValueError(f"host IPvFuture inválido: {host!r}")
        return

    address = ipaddress.ip_address(host.partition('%')[0])
    if isinstance(address, ipaddress.IPv4Address):
        raise ValueError(f"endereço IPv4 entre colchetes: {host!r}")


class RecordSanitizer:
    """Sanitizador de records de telemetria"""

    def __init__(self, rules: SanitizerRules = DEFAULT_RULES):
        self.rules = rules

    def is_sensitive_key(self, key: str) -> bool:
        return self.rules.sensitive_keys.fullmatch(str(key)) is not None

    def sanitize_value(self, value: str) -> str:
        """Substitui apenas os trechos sensíveis de uma string"""
        return self.rules.sensitive_values.sub(self.rules.placeholder, value)

    def is_sensitive_content(self, content: str) -> bool:
        """Verifica se o conteúdo contém dados sensíveis"""
        if not content:
            return False
        return self.rules.sensitive_values.search(content) is not None

    def sanitize(self, record: Record) -> Record:
        """Retorna um novo record sanitizado.

        A ordem dos passos é fixa: headers, URL/path, bodies. Uma URL que não
        pode ser interpretada depois da substituição de valores gera
        SanitizationError; JSON inválido nunca é erro.
        """
        update: Dict[str, Any] = {
            'request_headers': self.sanitize_headers(record.request_headers),
            'response_headers': self.sanitize_headers(record.response_headers),
        }

        if record.url:
            update['url'], update['path'] = self.sanitize_url(record.url, record.path)

        if record.request_body and record.request_content_type == JSON_CONTENT_TYPE:
            update['request_body'] = self.sanitize_json(record.request_body)
        if record.response_body and record.response_content_type == JSON_CONTENT_TYPE:
            update['response_body'] = self.sanitize_json(record.response_body)

        return record.model_copy(update=update)

    def sanitize_headers(self, headers: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        """Sanitiza headers; chave sensível substitui o valor inteiro"""
        if headers is None:
            return None

        sanitized = {}
        for key, value in headers.items():
            if self.is_sensitive_key(key):
                sanitized[key] = self.rules.placeholder
            else:
                sanitized[key] = self.sanitize_value(value)
        return sanitized

    def sanitize_url(self, url: str, path: str) -> Tuple[str, str]:
        """Sanitiza URL e path.

        A substituição de valores roda antes da análise da query, então a URL
        analisada já é a versão alterada.
        """
        url = self.sanitize_value(url)
        path = self.sanitize_value(path)

        try:
            parts = urlsplit(url)
            check_bracketed_host(parts.netloc)
            parts.port  # valida a porta
        except ValueError as e:
            raise SanitizationError(f"URL inválida após sanitização: {e}") from e

        redacted_keys = set()
        values = set()
        params: List[Tuple[str, str]] = []
        for key, value in parse_qsl(parts.query, keep_blank_values=True):
            values.add(value.lower())
            if self.is_sensitive_key(key):
                redacted_keys.add(key.lower())
                value = self.rules.placeholder
            params.append((key, value))

        if not redacted_keys:
            return url, path

        if self.rules.legacy_url_compat and values & redacted_keys:
            logger.debug("URL descartada: query referencia chave sensível")
            return "", path

        # sort estável: valores da mesma chave mantêm a ordem original
        params.sort(key=lambda item: item[0])
        query = urlencode(params)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment)), path

    def sanitize_json(self, body: str) -> str:
        """Sanitiza um body JSON que seja um objeto; outros formatos ficam intactos"""
        try:
            data = json.loads(body, parse_float=parse_finite_float, parse_constant=reject_constant)
        except (ValueError, RecursionError):
            return body

        if not isinstance(data, dict):
            return body

        sanitized = self._sanitize_object(data)
        try:
            return json.dumps(sanitized, separators=(',', ':'), ensure_ascii=False, allow_nan=False)
        except (ValueError, OverflowError, RecursionError):
            return body

    def _sanitize_object(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        for key, value in data.items():
            if self.is_sensitive_key(key):
                sanitized[key] = self.rules.placeholder
            else:
                sanitized[key] = self._sanitize_json_value(value)
        return sanitized

    def _sanitize_json_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.sanitize_value(value)
        if not self.rules.recursive:
            return value
        if isinstance(value, dict):
            return self._sanitize_object(value)
        if isinstance(value, list):
            return [self._sanitize_json_value(item) for item in value]
        return value


def create_sanitizer(rules: Optional[SanitizerRules] = None, **overrides) -> RecordSanitizer:
    """Factory function para criar sanitizador"""
    if rules is None:
        rules = SanitizerRules(**overrides)
    return RecordSanitizer(rules)
