"""
Bearer Agent - instrumentação de chamadas HTTP de saída

Envolve um transport httpx para bloquear domínios configurados no collector,
capturar request/response sem alterar o fluxo original, sanitizar dados
sensíveis e enviar a telemetria em background.
"""

__version__ = "1.0.0"
__description__ = "Outbound HTTP instrumentation agent for httpx"

from .config_cache import ConfigCache, fetch_config
from .dispatcher import TelemetryDispatcher, TelemetryFault, log_fault
from .errors import AgentError, BlockedDomainError, ConfigFetchError, DeliveryError, SanitizationError
from .log import configure_logging
from .models import AgentConfig, Record
from .sanitizer import DEFAULT_RULES, RecordSanitizer, SanitizerRules, create_sanitizer
from .settings import AgentSettings, load_settings
from .shipper import RecordShipper
from .transport import AgentTransport, init

__all__ = [
    'AgentConfig',
    'AgentError',
    'AgentSettings',
    'AgentTransport',
    'BlockedDomainError',
    'ConfigCache',
    'ConfigFetchError',
    'DEFAULT_RULES',
    'DeliveryError',
    'Record',
    'RecordSanitizer',
    'RecordShipper',
    'SanitizationError',
    'SanitizerRules',
    'TelemetryDispatcher',
    'TelemetryFault',
    'configure_logging',
    'create_sanitizer',
    'fetch_config',
    'init',
    'load_settings',
    'log_fault',
]
