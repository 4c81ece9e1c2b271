"""
Exceções do agente
"""
from typing import Optional

import httpx


class AgentError(Exception):
    """Erro interno do agente (nunca visível para quem faz a request)"""


class BlockedDomainError(httpx.TransportError):
    """Request recusada porque o hostname está na lista de domínios bloqueados"""

    def __init__(self, hostname: str, *, request: Optional[httpx.Request] = None):
        super().__init__(f"bearer: blocked domain {hostname!r}", request=request)
        self.hostname = hostname


class SanitizationError(AgentError):
    """A URL não pôde ser interpretada após a sanitização"""


class DeliveryError(AgentError):
    """Falha ao enviar records para o collector"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigFetchError(AgentError):
    """Falha ao obter a configuração do collector"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
