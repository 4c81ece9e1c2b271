"""
Envio de records sanitizados para o collector
"""
import platform
from typing import Any, Dict, Sequence

import httpx
import structlog

from . import __version__
from .errors import DeliveryError
from .metrics import RECORDS_SHIPPED, SHIPPING_TIME, PerformanceTimer
from .models import Record
from .settings import DEFAULT_LOGS_URL

logger = structlog.get_logger(__name__)

RUNTIME_TYPE = "python"
AGENT_TYPE = "bearer-python"
LOG_LEVEL_ALL = "ALL"


class RecordShipper:
    """Cliente do endpoint de ingestão de logs"""

    def __init__(self, client: httpx.Client, secret_key: str, logs_url: str = DEFAULT_LOGS_URL):
        self.client = client
        self.secret_key = secret_key
        self.logs_url = logs_url

    def build_payload(self, records: Sequence[Record]) -> Dict[str, Any]:
        return {
            'secretKey': self.secret_key,
            'runtime': {
                'type': RUNTIME_TYPE,
                'version': platform.python_version(),
            },
            'agent': {
                'type': AGENT_TYPE,
                'version': __version__,
                'log_level': LOG_LEVEL_ALL,
            },
            'logs': [record.to_wire() for record in records],
        }

    def ship(self, records: Sequence[Record]) -> None:
        """Envia os records em um único POST; levanta DeliveryError em falha"""
        if not records:
            return

        payload = self.build_payload(records)
        try:
            with PerformanceTimer(SHIPPING_TIME):
                response = self.client.post(
                    self.logs_url,
                    json=payload,
                    headers={'Accept': 'application/json', 'Content-Type': 'application/json'},
                )
        except httpx.RequestError as e:
            raise DeliveryError(f"Erro de conexão: {e}") from e

        if response.status_code != 200:
            raise DeliveryError(f"Status code não suportado: {response.status_code}", status_code=response.status_code)

        RECORDS_SHIPPED.inc(len(records))
        logger.debug("Records enviados", count=len(records))
