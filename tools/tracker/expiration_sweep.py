"""
Daily expiration sweep.

Finds every product (across all owners) whose warranty expires on the day
exactly ``lookahead_days`` from now and emails its owner a warning. The
same pass sends service-due reminders for service records whose next due
date falls on that day.

Each record is handled on its own: a failure while notifying one owner is
logged and counted, and the sweep moves on. A record is marked as noticed
for its current target date only after delivery succeeded, so a rerun on
the same day never sends a duplicate while a failed send is retried.

Usage:
    sweep = ExpirationSweep(products, services, users, mailer)
    report = sweep.run_sweep()
    report.sent, report.failed
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable

from core.status import SWEEP_LOOKAHEAD_DAYS, as_datetime, day_window, utcnow
from tools.tracker.email_templates import (
    EmailMessage,
    Mailer,
    render_service_due,
    render_warranty_warning,
)
from tools.tracker.products import ProductStore
from tools.tracker.services import ServiceStore
from tools.tracker.users import UserStore

logger = logging.getLogger("tracker.sweep")


@dataclass
class SweepReport:
    """Counters for one sweep run.

    candidates: records in the target window
    attempted:  deliveries tried (eligible owner, not yet noticed)
    sent:       deliveries that succeeded
    failed:     deliveries that failed or raised
    skipped:    candidates passed over (no owner, opted out, already noticed)
    """
    window_start: str = ""
    window_end: str = ""
    candidates: int = 0
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    started_at: str = ""
    finished_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ExpirationSweep:
    """Selects records expiring in the lookahead window and notifies owners.

    Args:
        products:       Product store.
        services:       Service store; None disables service-due reminders.
        users:          User store, resolves owners.
        mailer:         Delivery client.
        lookahead_days: Days ahead of today the target window sits.
    """

    def __init__(
        self,
        products: ProductStore,
        services: ServiceStore | None,
        users: UserStore,
        mailer: Mailer,
        lookahead_days: int = SWEEP_LOOKAHEAD_DAYS,
    ):
        self._products = products
        self._services = services
        self._users = users
        self._mailer = mailer
        self.lookahead_days = lookahead_days

    def run_sweep(self, now: datetime | None = None) -> SweepReport:
        """Run one sweep against ``now`` (defaults to the current UTC time)."""
        now = as_datetime(now or utcnow())
        start, end = day_window(now, self.lookahead_days)
        report = SweepReport(
            window_start=start.isoformat(),
            window_end=end.isoformat(),
            started_at=now.isoformat(),
        )
        logger.info(
            "Expiration sweep started for %s (%d days ahead)",
            start.date().isoformat(), self.lookahead_days,
        )

        for product in self._products.expiring_between(start.date(), end.date()):
            report.candidates += 1
            self._dispatch(
                report,
                record_label=f"product {product.short_id}",
                owner_id=product.owner_id,
                already_noticed=product.expiry_notice_for == product.warranty_expiry_date,
                build=lambda user, p=product: render_warranty_warning(
                    user.email, user.name, p.name, self.lookahead_days, self._mailer.app_url,
                ),
                mark=lambda p=product: self._products.mark_expiry_notice(
                    p.product_id, p.warranty_expiry_date,
                ),
            )

        if self._services is not None:
            due = self._services.due_between(start.date(), end.date())
            names = {
                pid: p.name
                for pid, p in self._products.get_products([s.product_id for s in due]).items()
            }
            for record in due:
                report.candidates += 1
                self._dispatch(
                    report,
                    record_label=f"service {record.short_id}",
                    owner_id=record.owner_id,
                    already_noticed=record.due_notice_for == record.next_service_due_date,
                    build=lambda user, s=record: render_service_due(
                        user.email, user.name, names.get(s.product_id, "product"),
                        s.service_center, s.next_service_due_date, self.lookahead_days,
                        self._mailer.app_url,
                    ),
                    mark=lambda s=record: self._services.mark_due_notice(
                        s.service_id, s.next_service_due_date,
                    ),
                )

        report.finished_at = utcnow().isoformat()
        logger.info(
            "Expiration sweep complete: %d candidate(s), %d sent, %d failed, %d skipped",
            report.candidates, report.sent, report.failed, report.skipped,
        )
        return report

    def _dispatch(
        self,
        report: SweepReport,
        record_label: str,
        owner_id: str,
        already_noticed: bool,
        build: Callable[[Any], EmailMessage],
        mark: Callable[[], None],
    ) -> None:
        """Notify one record's owner. Never raises."""
        try:
            if already_noticed:
                report.skipped += 1
                logger.debug("Sweep: %s already noticed", record_label)
                return
            user = self._users.get_user(owner_id)
            if user is None or not user.notifiable:
                report.skipped += 1
                logger.debug("Sweep: %s owner not eligible", record_label)
                return

            report.attempted += 1
            if self._mailer.send(build(user)):
                mark()
                report.sent += 1
            else:
                report.failed += 1
                logger.warning("Sweep: delivery failed for %s", record_label)
        except Exception:
            report.failed += 1
            logger.exception("Sweep: error while notifying for %s", record_label)
