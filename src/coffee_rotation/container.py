"""Shared dependency container for entrypoints."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coffee_rotation.application.ports import MessagePublisher
from coffee_rotation.application.services.outbox_dispatcher import OutboxDispatcher
from coffee_rotation.application.services.outbox_writer import OutboxWriter
from coffee_rotation.application.services.payment_rotation_service import (
    PaymentRotationService,
)
from coffee_rotation.application.services.rotation_engine import RotationEngine
from coffee_rotation.config import AppConfig
from coffee_rotation.infrastructure.db.repositories import (
    SqlAlchemyGroupRepository,
    SqlAlchemyMembershipRepository,
    SqlAlchemyOutboxRepository,
    SqlAlchemyPaymentRepository,
    SqlAlchemyUserRepository,
)
from coffee_rotation.infrastructure.db.session import (
    SessionTransactionManager,
    create_session_factory,
)
from coffee_rotation.infrastructure.kafka.publisher import KafkaMessagePublisher
from coffee_rotation.metrics.collector import MetricsCollector


class Container:
    """Centralized factory for repos and services used across entrypoints."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        if config.db.database_url:
            self._session_factory = create_session_factory(
                config.db.database_url,
                pool_size=config.db.pool_size,
                max_overflow=config.db.max_overflow,
                pool_timeout=config.db.pool_timeout,
            )
        self._transaction_manager = (
            SessionTransactionManager(self._session_factory)
            if self._session_factory
            else None
        )
        self._repos: dict | None = None
        self._metrics_collector = MetricsCollector()

    @property
    def session_factory(self) -> Optional[async_sessionmaker[AsyncSession]]:
        return self._session_factory

    @property
    def transaction_manager(self) -> SessionTransactionManager | None:
        return self._transaction_manager

    @property
    def metrics_collector(self) -> MetricsCollector:
        return self._metrics_collector

    def build_repos(self) -> dict:
        """All SQLAlchemy repos. Cached after first call."""
        if not self._session_factory:
            raise ValueError("DATABASE_URL is required for repositories.")
        if self._repos is not None:
            return self._repos
        session_factory = self._session_factory
        self._repos = {
            "user_repo": SqlAlchemyUserRepository(session_factory=session_factory),
            "group_repo": SqlAlchemyGroupRepository(session_factory=session_factory),
            "membership_repo": SqlAlchemyMembershipRepository(
                session_factory=session_factory
            ),
            "payment_repo": SqlAlchemyPaymentRepository(
                session_factory=session_factory
            ),
            "outbox_repo": SqlAlchemyOutboxRepository(session_factory),
        }
        return self._repos

    def build_outbox_writer(self) -> OutboxWriter:
        """OutboxWriter bound to the outbox table."""
        repos = self.build_repos()
        return OutboxWriter(
            outbox_repo=repos["outbox_repo"],
            transaction_manager=self._transaction_manager,
        )

    def build_payment_rotation_service(self) -> PaymentRotationService:
        """PaymentRotationService with configured subjects."""
        repos = self.build_repos()
        return PaymentRotationService(
            user_repo=repos["user_repo"],
            group_repo=repos["group_repo"],
            membership_repo=repos["membership_repo"],
            payment_repo=repos["payment_repo"],
            outbox_writer=self.build_outbox_writer(),
            rotation_engine=RotationEngine(),
            next_payment_subject=self._config.rotation.next_payment_subject,
            skip_payment_subject=self._config.rotation.skip_payment_subject,
            metrics_collector=self._metrics_collector,
            transaction_manager=self._transaction_manager,
        )

    def build_message_publisher(self) -> KafkaMessagePublisher | None:
        """Kafka publisher, or None when Kafka is disabled."""
        kafka = self._config.kafka
        if not kafka.kafka_enabled:
            return None
        return KafkaMessagePublisher(
            bootstrap_servers=kafka.kafka_bootstrap_servers,
            send_timeout_seconds=kafka.kafka_send_timeout_seconds,
            request_timeout_ms=kafka.kafka_request_timeout_ms,
            client_id=kafka.kafka_client_id,
        )

    def build_outbox_dispatcher(self, publisher: MessagePublisher) -> OutboxDispatcher:
        """OutboxDispatcher relaying to the given publisher."""
        repos = self.build_repos()
        outbox = self._config.outbox
        return OutboxDispatcher(
            outbox_repo=repos["outbox_repo"],
            publisher=publisher,
            transaction_manager=self._transaction_manager,
            max_retries=outbox.max_retries,
            batch_size=outbox.batch_size,
            retention_days=outbox.cleanup_retention_days,
            metrics_collector=self._metrics_collector,
        )
