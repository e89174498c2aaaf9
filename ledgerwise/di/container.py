"""Dependency injection container for core services."""
from typing import Optional

import httpx

from ledgerwise.agents.categorization import CategorizationAgent
from ledgerwise.core.config import Settings, get_settings
from ledgerwise.services.card_payment_learning import CardPaymentTypeLearner
from ledgerwise.services.correction_learning import CorrectionRecorder
from ledgerwise.services.decision_engine import DecisionEngine
from ledgerwise.services.llm import GenerativeCategorizationService, build_generative_service
from ledgerwise.services.pattern_matcher import PatternMatcher
from ledgerwise.services.pattern_repository import PatternRepository, SQLitePatternRepository
from ledgerwise.services.pattern_store import PatternStore


class ServiceContainer:
    """
    Wires the learning subsystem once per process.

    The store, repository and card learner are shared state; matcher and
    engine receive them explicitly and never reach for globals.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        repository: Optional[PatternRepository] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._http_client = http_client
        self._store = None
        self._llm = None
        self._llm_built = False
        self._card_learner = None
        self._recorder = None
        self._matcher = None
        self._engine = None
        self._agent = None

    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def repository(self) -> PatternRepository:
        if self._repository is None:
            self._repository = SQLitePatternRepository(self.settings().state_db)
        return self._repository

    def store(self) -> PatternStore:
        if self._store is None:
            self._store = PatternStore.from_repository(self.repository(), config=self.settings().learning)
        return self._store

    def llm(self) -> Optional[GenerativeCategorizationService]:
        if not self._llm_built:
            self._llm = build_generative_service(self.settings().llm, http_client=self._http_client)
            self._llm_built = True
        return self._llm

    def card_learner(self) -> CardPaymentTypeLearner:
        if self._card_learner is None:
            self._card_learner = CardPaymentTypeLearner(
                repository=self.repository(), config=self.settings().learning
            )
        return self._card_learner

    def recorder(self) -> CorrectionRecorder:
        if self._recorder is None:
            self._recorder = CorrectionRecorder(
                store=self.store(), repository=self.repository(), card_learner=self.card_learner()
            )
        return self._recorder

    def matcher(self) -> PatternMatcher:
        if self._matcher is None:
            self._matcher = PatternMatcher(store=self.store(), service=self.llm())
        return self._matcher

    def engine(self) -> DecisionEngine:
        if self._engine is None:
            self._engine = DecisionEngine(service=self.llm(), thresholds=self.settings().thresholds)
        return self._engine

    def categorization_agent(self) -> CategorizationAgent:
        if self._agent is None:
            self._agent = CategorizationAgent(matcher=self.matcher(), engine=self.engine())
        return self._agent


container = ServiceContainer()


def get_container() -> ServiceContainer:
    return container


def set_container(new_container: ServiceContainer) -> ServiceContainer:
    """Swap the process container (tests, alternate storage)."""
    global container
    container = new_container
    return container
