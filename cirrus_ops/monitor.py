"""Fixed-interval monitoring of the masternode's two nodes."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol

from .amounts import format_coins, units_to_coins
from .config import MonitorConfig
from .node_client import NodeAPIClient, NodeTransportError
from .notify import COLOR_ALERT, COLOR_OK, COLOR_WARN, Notification, NotificationError, Notifier
from .schemas import BatchResult, SchemaError

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    def sleep(self, seconds: float, stop_event: threading.Event) -> bool:
        """Wait ``seconds``; return ``True`` if ``stop_event`` was set meanwhile."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float, stop_event: threading.Event) -> bool:
        return stop_event.wait(seconds)


class Ticker:
    """Waits one interval at a time and honours a stop signal between ticks."""

    def __init__(
        self,
        interval_seconds: float,
        clock: Clock | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Ticker interval must be positive")
        self.interval_seconds = interval_seconds
        self.clock = clock or SystemClock()
        self.stop_event = stop_event or threading.Event()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        self.stop_event.set()

    def wait(self) -> bool:
        """Return ``True`` when the next tick is due, ``False`` once stopped."""

        if self.stopped:
            return False
        return not self.clock.sleep(self.interval_seconds, self.stop_event)


@dataclass
class CycleReport:
    """What one polling cycle observed; ``None`` means the check was skipped."""

    mainchain_up: Optional[bool] = None
    sidechain_up: Optional[bool] = None
    inactivity: Optional[timedelta] = None
    inactivity_alert: bool = False
    reported: bool = False
    transfers: List[BatchResult] = field(default_factory=list)


def inactivity_exceeds(period: timedelta, threshold: timedelta) -> bool:
    return period >= threshold


class MonitoringLoop:
    """Poll node health every interval; report and transfer every few hours.

    ``elapsed_minutes`` counts minutes since the last report. A cycle polls the
    mainchain status, then the sidechain status only if the mainchain answered,
    then the federation inactivity of ``config.public_key`` only if both
    answered. When ``elapsed_minutes`` reaches ``hours_between_updates * 60``
    the uptime/balance report is sent, ``transfer`` runs and the counter resets.
    Failures only skip the affected feature for the cycle.
    """

    def __init__(
        self,
        mainchain: NodeAPIClient,
        sidechain: NodeAPIClient,
        notifier: Notifier,
        config: MonitorConfig,
        *,
        wallet_name: str | None = None,
        transfer: Callable[[], List[BatchResult]] | None = None,
        clock: Clock | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.mainchain = mainchain
        self.sidechain = sidechain
        self.notifier = notifier
        self.config = config
        self.wallet_name = wallet_name
        self.transfer = transfer
        self.clock = clock or SystemClock()
        self.ticker = Ticker(config.minute_update_interval * 60, self.clock, stop_event)
        self.elapsed_minutes = 0
        self.started_at = self.clock.now()

    @property
    def report_after_minutes(self) -> int:
        return self.config.hours_between_updates * 60

    def stop(self) -> None:
        self.ticker.stop()

    def run_forever(self) -> None:
        logger.info(
            "Monitoring %r and %r every %d minute(s)",
            self.mainchain,
            self.sidechain,
            self.config.minute_update_interval,
        )
        while not self.ticker.stopped:
            try:
                self.run_once()
            except Exception:  # pragma: no cover - best effort logging
                logger.exception("Monitoring cycle encountered an error")
            if not self.ticker.wait():
                break
            self.elapsed_minutes += self.config.minute_update_interval
        logger.info("Monitoring stopped")

    def run_once(self) -> CycleReport:
        report = CycleReport()
        report.mainchain_up = self._check_health(self.mainchain, "Mainchain")
        if report.mainchain_up:
            report.sidechain_up = self._check_health(self.sidechain, "Sidechain")
        if report.mainchain_up and report.sidechain_up:
            self._check_inactivity(report)
        else:
            logger.debug("Skipping inactivity check; a node health check failed")

        if self.elapsed_minutes == self.report_after_minutes:
            self._send_report(report)
            self.elapsed_minutes = 0
        return report

    def _notify(self, notification: Notification) -> None:
        try:
            self.notifier.send(notification)
        except NotificationError as exc:
            logger.error("Could not deliver %r: %s", notification.title, exc)

    def _check_health(self, client: NodeAPIClient, label: str) -> bool:
        try:
            status = client.node_status()
        except (NodeTransportError, SchemaError) as exc:
            logger.warning("%s node did not respond: %s", label, exc)
            self._notify(
                Notification(
                    title=f"{label} node down",
                    description=f"{label} node at {client.config.base_url} did not respond.",
                    color=COLOR_ALERT,
                )
            )
            return False
        logger.debug("%s node state=%s height=%s", label, status.state, status.consensus_height)
        return True

    def _check_inactivity(self, report: CycleReport) -> None:
        public_key = self.config.public_key
        if not public_key:
            return
        try:
            members = self.sidechain.federation_members()
        except (NodeTransportError, SchemaError) as exc:
            logger.warning("Could not read federation members: %s", exc)
            return
        member = next((m for m in members if m.pubkey == public_key), None)
        if member is None:
            logger.warning("Public key %s is not in the federation member list", public_key)
            return
        report.inactivity = member.period_of_inactivity
        threshold = timedelta(minutes=self.config.inactivity_threshold_minutes)
        if inactivity_exceeds(member.period_of_inactivity, threshold):
            report.inactivity_alert = True
            self._notify(
                Notification(
                    title="Masternode inactive",
                    description=f"Federation member {public_key} has not produced a block recently.",
                    fields=[("Period of inactivity", str(member.period_of_inactivity))],
                    color=COLOR_WARN,
                )
            )

    def _balance_line(self, client: NodeAPIClient) -> str:
        if not self.wallet_name:
            return "n/a"
        try:
            balances = client.wallet_balance(self.wallet_name)
        except (NodeTransportError, SchemaError) as exc:
            logger.warning("Balance lookup on %r failed: %s", client, exc)
            return "unavailable"
        confirmed = sum(balance.amount_confirmed for balance in balances)
        return format_coins(units_to_coins(confirmed))

    def _send_report(self, report: CycleReport) -> None:
        uptime = self.clock.now() - self.started_at
        fields = [
            ("Uptime", str(timedelta(seconds=int(uptime.total_seconds())))),
            ("Mainchain balance", self._balance_line(self.mainchain)),
            ("Sidechain balance", self._balance_line(self.sidechain)),
        ]
        if report.inactivity is not None:
            fields.append(("Period of inactivity", str(report.inactivity)))
        self._notify(
            Notification(
                title="Masternode status report",
                description="Scheduled status update.",
                fields=fields,
                color=COLOR_OK,
            )
        )
        report.reported = True

        if self.transfer is None:
            return
        try:
            report.transfers = self.transfer()
        except Exception as exc:
            logger.exception("Scheduled cross-chain transfer failed")
            self._notify(
                Notification(
                    title="Cross-chain transfer failed",
                    description=str(exc),
                    color=COLOR_ALERT,
                )
            )
            return
        sent = [r.broadcast.transaction_id for r in report.transfers if r.broadcast is not None]
        if sent:
            self._notify(
                Notification(
                    title="Cross-chain transfer sent",
                    description=f"{len(sent)} transaction(s) broadcast.",
                    fields=[("Transaction", txid) for txid in sent],
                )
            )

