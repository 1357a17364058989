"""
groupguard.runtime — Service wiring
====================================

One :class:`GroupGuardRuntime` owns every long-lived object: the rule
store, interception log, occupancy tracker, event pump and the optional
directory-backed services.  The API reads it from ``app.state``; tests
build one directly with an in-memory engine.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable

from sqlalchemy import Engine

from groupguard.config import GroupGuardConfig
from groupguard.database.engine import run_db
from groupguard.engine.events import PresenceEvent
from groupguard.engine.evaluator import RuleEngine
from groupguard.engine.occupancy import OccupancySnapshot, OccupancyTracker
from groupguard.services.alert_service import AlertService
from groupguard.services.audit_service import InterceptionArchive
from groupguard.services.directory_client import Directory, DirectoryClient
from groupguard.services.enrichment_service import EnrichmentService
from groupguard.services.event_pump import EventPump
from groupguard.services.gatekeeper import Gatekeeper
from groupguard.services.interception_log import InterceptionLog
from groupguard.services.rule_store import RuleConfigStore
from groupguard.services.scan_service import ScanService
from groupguard.services.snapshot_store import load_tracker, save_tracker

logger = logging.getLogger(__name__)


class GroupGuardRuntime:
    def __init__(
        self,
        cfg: GroupGuardConfig,
        engine: Engine,
        *,
        directory: Directory | None = None,
        alerts: AlertService | None = None,
        tracker: OccupancyTracker | None = None,
    ) -> None:
        self.cfg = cfg
        self.engine = engine
        self.rule_engine = RuleEngine()
        self.store = RuleConfigStore(engine, cfg.rule_priority)
        self.archive = InterceptionArchive(engine)
        self.log = InterceptionLog(cfg.interception_log_capacity, sink=self.archive)
        self.tracker = tracker or OccupancyTracker(cfg.history_capacity)
        self.pump = EventPump(self.tracker)
        self.directory = directory
        self.alerts = alerts
        self.gatekeeper = Gatekeeper(
            rules=self.store.snapshot,
            log=self.log,
            directory=directory,
            alerts=alerts,
            engine=self.rule_engine,
            auto_process=cfg.auto_process,
            request_delay=cfg.scan_delay_seconds,
        )
        self.scans = (
            ScanService(
                directory,
                page_size=cfg.scan_page_size,
                delay=cfg.scan_delay_seconds,
                timeout=cfg.directory_timeout_seconds,
            )
            if directory is not None
            else None
        )
        self.enrichment = (
            EnrichmentService(self.tracker, directory, self.pump.submit)
            if directory is not None
            else None
        )
        self._running = False

    # -- lifecycle -----------------------------------------------------------
    async def start(self) -> None:
        await run_db(self.store.reload)
        self.pump.start()
        if self.enrichment is not None:
            self.enrichment.start()
        self._running = True
        logger.info("%s runtime started", self.cfg.community_name)

    async def stop(self) -> None:
        if self.enrichment is not None:
            await self.enrichment.stop()
        await self.pump.stop()
        await run_db(save_tracker, self.engine, self.tracker)
        if isinstance(self.directory, DirectoryClient):
            await self.directory.aclose()
        self._running = False
        logger.info("%s runtime stopped", self.cfg.community_name)

    # -- occupancy -----------------------------------------------------------
    async def ingest(self, events: Iterable[PresenceEvent]) -> OccupancySnapshot:
        """Feed events in order and return the resulting snapshot."""
        if self._running:
            for event in events:
                self.pump.submit(event)
            await self.pump.join()
        else:
            for event in events:
                self.tracker.apply(event)
        return self.tracker.get_current_occupancy()


def build_runtime(cfg: GroupGuardConfig, engine: Engine) -> GroupGuardRuntime:
    """Wire a runtime from config plus ``DIRECTORY_API_TOKEN`` and
    ``ALERT_WEBHOOK_URL`` from the environment."""
    directory = None
    if cfg.directory_base_url:
        directory = DirectoryClient(
            cfg.directory_base_url,
            token=os.getenv("DIRECTORY_API_TOKEN") or None,
            timeout=cfg.directory_timeout_seconds,
        )
    else:
        logger.warning("directory_base_url not set; join requests and scans use local data only")

    webhook = os.getenv("ALERT_WEBHOOK_URL")
    alerts = AlertService(webhook, community_name=cfg.community_name) if webhook else None

    tracker = load_tracker(engine, cfg.history_capacity)
    return GroupGuardRuntime(cfg, engine, directory=directory, alerts=alerts, tracker=tracker)
