"""
Cache da configuração remota
Primeira leitura bloqueia até o fetch; depois uma thread em background
atualiza o valor no intervalo configurado.
"""
import threading
from typing import Callable, Optional

import httpx
import structlog

from .errors import ConfigFetchError
from .metrics import CONFIG_FETCH_FAILURES
from .models import AgentConfig

logger = structlog.get_logger(__name__)

DEFAULT_REFRESH_INTERVAL = 5.0


def fetch_config(client: httpx.Client, secret_key: str, url: str) -> AgentConfig:
    """Busca uma configuração nova no collector"""
    try:
        response = client.get(
            url,
            headers={'Accept': 'application/json', 'Authorization': secret_key},
        )
    except httpx.RequestError as e:
        raise ConfigFetchError(f"Erro de conexão: {e}") from e

    if not response.is_success:
        raise ConfigFetchError(f"Erro HTTP {response.status_code}", status_code=response.status_code)

    try:
        return AgentConfig.model_validate_json(response.content)
    except ValueError as e:
        raise ConfigFetchError(f"Configuração inválida: {e}") from e


class ConfigCache:
    """Mantém a configuração atual em memória"""

    def __init__(
        self,
        fetch: Callable[[], AgentConfig],
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        logger=logger,
    ):
        if refresh_interval <= 0:
            refresh_interval = DEFAULT_REFRESH_INTERVAL

        self.fetch = fetch
        self.refresh_interval = refresh_interval
        self.logger = logger
        self.updates = 0

        self._config: Optional[AgentConfig] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._refresher: Optional[threading.Thread] = None

    def get(self) -> Optional[AgentConfig]:
        """Retorna a configuração atual, buscando-a na primeira chamada.

        Retorna None se ainda não existe configuração e o fetch falhou; a
        próxima chamada tenta novamente.
        """
        with self._lock:
            if self._config is not None:
                return self._config
            if self._stop.is_set():
                return None

            try:
                config = self.fetch()
            except Exception as e:
                CONFIG_FETCH_FAILURES.inc()
                self.logger.warning("Erro ao buscar configuração", error=str(e))
                return None

            self._config = config
            self.updates += 1
            self._start_refresher()
            return config

    @property
    def current(self) -> Optional[AgentConfig]:
        """Valor em cache, sem disparar fetch"""
        with self._lock:
            return self._config

    def set(self, config: Optional[AgentConfig]) -> None:
        """Substitui a configuração em cache"""
        with self._lock:
            self._config = config

    def _start_refresher(self) -> None:
        if self._refresher is not None:
            return
        self._refresher = threading.Thread(
            target=self._refresh_loop,
            name="bearer-config-refresh",
            daemon=True,
        )
        self._refresher.start()

    def _refresh_loop(self) -> None:
        self.logger.debug("Iniciando refresh periódico da configuração", interval=self.refresh_interval)

        while not self._stop.wait(self.refresh_interval):
            self.refresh()

        self.logger.debug("Refresh da configuração encerrado")

    def refresh(self) -> bool:
        """Busca uma configuração nova; mantém a anterior se falhar"""
        try:
            config = self.fetch()
        except Exception as e:
            CONFIG_FETCH_FAILURES.inc()
            self.logger.warning("Erro ao atualizar configuração", error=str(e))
            return False

        with self._lock:
            self._config = config
            self.updates += 1
        return True

    def close(self, timeout: Optional[float] = None) -> None:
        """Interrompe a thread de refresh"""
        self._stop.set()
        refresher = self._refresher
        if refresher is not None and refresher is not threading.current_thread():
            refresher.join(timeout)
