"""
Modelos de dados do agente
Record enviado ao collector, configuração remota e dados capturados por request
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

RECORD_TYPE_REQUEST_END = "REQUEST_END"


def collapse_headers(headers: Optional[httpx.Headers]) -> Optional[Dict[str, str]]:
    """Converte headers httpx em dict simples.

    O collector só aceita um valor por header, então o primeiro valor de
    cada nome é mantido e os demais são descartados.
    """
    if headers is None:
        return None

    collapsed: Dict[str, str] = {}
    seen = set()
    for raw_key, raw_value in headers.raw:
        key = raw_key.decode(headers.encoding)
        if key.lower() in seen:
            continue
        seen.add(key.lower())
        collapsed[key] = raw_value.decode(headers.encoding)
    return collapsed


def header_value(headers: Optional[Dict[str, str]], name: str) -> str:
    if not headers:
        return ""
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return ""


class Record(BaseModel):
    """Unidade de telemetria de uma chamada HTTP de saída (imutável)"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    protocol: str = ""
    path: str = ""
    hostname: str = ""
    method: str = ""
    started_at: int = Field(default=0, alias="startedAt")
    ended_at: int = Field(default=0, alias="endedAt")
    type: str = RECORD_TYPE_REQUEST_END
    status_code: int = Field(default=0, alias="statusCode")
    url: str = ""
    request_headers: Optional[Dict[str, str]] = Field(default=None, alias="requestHeaders")
    request_body: str = Field(default="", alias="requestBody")
    response_headers: Optional[Dict[str, str]] = Field(default=None, alias="responseHeaders")
    response_body: str = Field(default="", alias="responseBody")

    @property
    def request_content_type(self) -> str:
        return header_value(self.request_headers, "content-type")

    @property
    def response_content_type(self) -> str:
        return header_value(self.response_headers, "content-type")

    def to_wire(self) -> Dict[str, Any]:
        """Serializa com os nomes de campo esperados pelo collector"""
        return self.model_dump(by_alias=True)


class AgentConfig(BaseModel):
    """Configuração remota retornada pelo endpoint de config"""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    blocked_domains: List[str] = Field(default_factory=list, alias="blockedDomains")

    def is_blocked(self, hostname: str) -> bool:
        return hostname in self.blocked_domains


@dataclass
class CapturedExchange:
    """Dados privados de uma request, coletados na thread de quem chamou"""

    request: httpx.Request
    started_at: int
    ended_at: int
    response: Optional[httpx.Response] = None
    request_body: Optional[bytes] = None
    response_body: Optional[bytes] = None
    # False quando response_body já está decodificado (content-encoding aplicado)
    response_body_encoded: bool = True
    error: Optional[BaseException] = None
