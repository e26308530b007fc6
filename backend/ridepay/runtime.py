"""
Process-level wiring.

Settings, the database engine and the processor client are built once
per process and handed to the API and the Celery tasks. Services are
created per unit of work from a session and these shared collaborators.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
import logging
import time
from typing import Callable, Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .core.config import Settings, get_settings
from .core.time_utils import utcnow
from .database import create_all_tables, create_db_engine, create_session_factory
from .integrations.processor_client import ProcessorClient
from .integrations.stripe_processor import StripeProcessorClient
from .services.capture_queue_service import CaptureQueueService
from .services.capture_worker import ReconciliationWorker
from .services.payment_lifecycle_service import PaymentLifecycleService

logger = logging.getLogger(__name__)


@dataclass
class PaymentRuntime:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    processor: ProcessorClient
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], datetime] = utcnow

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def lifecycle_service(self, db: Session) -> PaymentLifecycleService:
        return PaymentLifecycleService(db, self.processor, self.settings, clock=self.clock)

    def capture_queue_service(self, db: Session) -> CaptureQueueService:
        return CaptureQueueService(db, clock=self.clock)

    def capture_worker(self, db: Session) -> ReconciliationWorker:
        return ReconciliationWorker(
            self.capture_queue_service(db),
            self.lifecycle_service(db),
            self.settings,
            sleep=self.sleep,
        )

    @property
    def processor_configured(self) -> bool:
        return bool(getattr(self.processor, "configured", True))

    def dispose(self) -> None:
        self.engine.dispose()


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    processor: Optional[ProcessorClient] = None,
    engine: Optional[Engine] = None,
    create_tables: bool = False,
) -> PaymentRuntime:
    """Construct the shared collaborators for this process."""
    settings = settings or get_settings()
    engine = engine or create_db_engine(settings.database_url)
    if create_tables:
        create_all_tables(engine)
    if processor is None:
        processor = StripeProcessorClient(
            settings.stripe_key_value(),
            webhook_secret=(
                settings.stripe_webhook_secret.get_secret_value()
                if settings.stripe_webhook_secret
                else None
            ),
            timeout_seconds=settings.stripe_timeout_seconds,
            max_network_retries=settings.stripe_max_network_retries,
        )
    logger.info(f"Payment runtime ready (environment={settings.environment}, currency={settings.stripe_currency})")
    return PaymentRuntime(
        settings=settings,
        engine=engine,
        session_factory=create_session_factory(engine),
        processor=processor,
    )
