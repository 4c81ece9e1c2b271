"""
Configurações do agente Bearer
Gerencia variáveis de ambiente, arquivo YAML e validações
"""
import os
from typing import Optional

import structlog
import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_URL = "https://config.bearer.sh/config"
DEFAULT_LOGS_URL = "https://agent.bearer.sh/logs"


class AgentSettings(BaseSettings):
    """Configurações principais do agente"""

    model_config = SettingsConfigDict(env_prefix="BEARER_", case_sensitive=False)

    # Credenciais
    secret_key: str = Field(default="", description="Secret key da Bearer; vazio desabilita a telemetria")

    # Endpoints do collector
    config_url: str = Field(default=DEFAULT_CONFIG_URL, description="Endpoint de configuração")
    logs_url: str = Field(default=DEFAULT_LOGS_URL, description="Endpoint de ingestão de logs")
    timeout: float = Field(default=10.0, description="Timeout das chamadas ao collector em segundos")

    # Cache de configuração
    refresh_config_every: float = Field(default=5.0, description="Intervalo de refresh da configuração em segundos")

    # Telemetria
    telemetry_queue_size: int = Field(default=1000, description="Tamanho máximo da fila de telemetria")
    telemetry_workers: int = Field(default=2, description="Número de workers de telemetria")

    # Sanitização
    recursive_redaction: bool = Field(default=False, description="Sanitizar objetos JSON aninhados")
    legacy_url_compat: bool = Field(default=True, description="Manter o comportamento legado de sanitização de URL")

    # Logging
    log_level: str = Field(default="INFO", description="Nível de log")
    log_format: str = Field(default="json", description="Formato do log")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level deve ser um de: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        if v.lower() not in ('json', 'console'):
            raise ValueError("log_format deve ser 'json' ou 'console'")
        return v.lower()

    @field_validator('refresh_config_every', 'timeout')
    @classmethod
    def validate_positive_seconds(cls, v):
        if v <= 0:
            raise ValueError('intervalos devem ser maiores que zero')
        return v

    @field_validator('telemetry_queue_size', 'telemetry_workers')
    @classmethod
    def validate_positive_int(cls, v):
        if v < 1:
            raise ValueError('deve ser pelo menos 1')
        return v

    @property
    def telemetry_enabled(self) -> bool:
        return self.secret_key != ""


class SettingsManager:
    """Gerenciador de configurações com suporte a arquivos YAML"""

    def __init__(self, config_path: Optional[str] = None, **overrides):
        self.overrides = overrides
        self.settings = AgentSettings(**overrides)

        if config_path and os.path.exists(config_path):
            self._load_config_file(config_path)

    def _load_config_file(self, config_path: str):
        """Carrega configurações de arquivo YAML (seção ``agent``)"""
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Erro ao carregar arquivo de configuração", path=config_path, error=str(e))
            return

        section = config_data.get('agent') or {}
        values = self.settings.model_dump()
        values.update({k: v for k, v in section.items() if k in values})
        values.update(self.overrides)
        # Revalida para que valores do YAML passem pelos mesmos validators
        self.settings = AgentSettings.model_validate(values)


def load_settings(config_path: Optional[str] = None, **overrides) -> AgentSettings:
    """Carrega as configurações do ambiente e, se existir, do arquivo YAML"""
    path = config_path or os.getenv('BEARER_CONFIG_PATH')
    return SettingsManager(config_path=path, **overrides).settings
