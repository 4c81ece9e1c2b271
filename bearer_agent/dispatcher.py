"""
Pool de workers de telemetria
Fila limitada com política drop-newest: quando a fila está cheia o item novo
é descartado e a thread de quem chamou nunca espera.
"""
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import structlog

from .metrics import RECORDS_DROPPED, RECORDS_FAILED

logger = structlog.get_logger(__name__)

_STOP = object()


@dataclass(frozen=True)
class TelemetryFault:
    """Falha ocorrida no caminho de telemetria"""

    stage: str
    error: BaseException
    hostname: str = ""


def log_fault(fault: TelemetryFault) -> None:
    """Error sink padrão: registra a falha como warning"""
    logger.warning(
        "Falha no caminho de telemetria",
        stage=fault.stage,
        error=str(fault.error),
        error_type=type(fault.error).__name__,
        hostname=fault.hostname,
    )


ErrorSink = Callable[[TelemetryFault], None]


class TelemetryDispatcher:
    """Executa handler(item) em threads de background"""

    def __init__(
        self,
        handler: Callable[[Any], None],
        max_queue_size: int = 1000,
        workers: int = 2,
        error_sink: ErrorSink = log_fault,
    ):
        self.handler = handler
        self.error_sink = error_sink
        self.max_queue_size = max_queue_size

        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max_queue_size)
        self._pending = 0
        self._pending_cond = threading.Condition()
        self._closed = False

        self.stats = {
            'submitted': 0,
            'processed': 0,
            'dropped': 0,
            'faults': 0,
        }

        self._workers: List[threading.Thread] = []
        for index in range(max(1, workers)):
            worker = threading.Thread(
                target=self._run,
                name=f"bearer-telemetry-{index}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)

    def submit(self, item: Any) -> bool:
        """Enfileira um item sem bloquear; retorna False se foi descartado"""
        with self._pending_cond:
            if self._closed:
                return False
            try:
                self._queue.put_nowait(item)
            except queue.Full:
                self.stats['dropped'] += 1
                dropped = True
            else:
                self._pending += 1
                self.stats['submitted'] += 1
                dropped = False

        if dropped:
            RECORDS_DROPPED.inc()
            logger.warning("Fila de telemetria cheia, record descartado", max_queue_size=self.max_queue_size)
            return False
        return True

    def report(self, fault: TelemetryFault) -> None:
        """Entrega uma falha ao error sink sem nunca propagar exceções"""
        with self._pending_cond:
            self.stats['faults'] += 1
        RECORDS_FAILED.labels(reason=fault.stage).inc()
        try:
            self.error_sink(fault)
        except Exception as e:
            logger.error("Erro no error sink de telemetria", error=str(e))

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self.handler(item)
            except Exception as e:
                self.report(TelemetryFault(stage="task", error=e))
            finally:
                self._task_done()

    def _task_done(self) -> None:
        with self._pending_cond:
            self.stats['processed'] += 1
            self._pending -= 1
            if self._pending <= 0:
                self._pending_cond.notify_all()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Aguarda o processamento dos itens enfileirados"""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._pending_cond:
            while self._pending > 0:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._pending_cond.wait(remaining)
        return True

    def close(self, timeout: Optional[float] = None) -> None:
        """Processa o que está na fila e encerra os workers"""
        with self._pending_cond:
            if self._closed:
                return
            # Depois daqui nenhum submit entra na fila atrás dos sentinelas
            self._closed = True

        for _ in self._workers:
            self._queue.put(_STOP)
        for worker in self._workers:
            if worker is not threading.current_thread():
                worker.join(timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    def get_stats(self):
        """Retorna estatísticas do dispatcher"""
        with self._pending_cond:
            return self.stats.copy()
