"""Application wiring: one object owning storage, engine and services."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from taskrouter.config import Settings
from taskrouter.engine.bindings import BindingMaintainer
from taskrouter.engine.callbacks import CallbackNotifier, HttpCallbackNotifier
from taskrouter.engine.dispatcher import TaskDispatcher
from taskrouter.engine.timer import RouteTimer, TimeoutScheduler
from taskrouter.services import AgentService, PlanService, QueueService, RouterService, TaskService
from taskrouter.storage.database import Database
from taskrouter.storage.repositories import Repositories
from taskrouter.storage.transaction import TransactionManager

logger = logging.getLogger(__name__)


class AppContext:
    """
    Builds the object graph for one process.

    ``notifier``, ``timer`` and ``clock`` can be replaced, which tests use to
    capture callbacks and drive route timeouts by hand.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        notifier: CallbackNotifier | None = None,
        timer: TimeoutScheduler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or Settings.load()
        self.db = Database(self.settings.data_dir)
        self.db.ensure_tables()

        self.tx = TransactionManager(self.db)
        self.repos = Repositories()
        self.bindings = BindingMaintainer(self.repos)
        self.timer = timer or RouteTimer()
        self.notifier = notifier or HttpCallbackNotifier(timeout=self.settings.callback_timeout)
        self.dispatcher = TaskDispatcher(self.tx, self.repos, self.timer, self.notifier, clock=clock)

        self.routers = RouterService(self.tx, self.repos)
        self.queues = QueueService(self.tx, self.repos, self.bindings, self.dispatcher)
        self.agents = AgentService(self.tx, self.repos, self.bindings, self.dispatcher, clock=clock)
        self.plans = PlanService(self.tx, self.repos)
        self.tasks = TaskService(self.tx, self.repos, self.dispatcher, clock=clock)

    def recover(self) -> int:
        """Re-arm route timers for waiting tasks persisted by a previous run."""
        with self.db.connect() as conn:
            tasks = self.repos.task.waiting_with_timeout(conn)
        for task in tasks:
            self.dispatcher.arm_timer(task)
        if tasks:
            logger.info("Re-armed route timers for %d waiting tasks", len(tasks))
        return len(tasks)

    def close(self) -> None:
        if isinstance(self.timer, RouteTimer):
            self.timer.shutdown()
        if isinstance(self.notifier, HttpCallbackNotifier):
            self.notifier.close()
