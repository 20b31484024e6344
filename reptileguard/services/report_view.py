# reptileguard/services/report_view.py
"""
Read side of the dashboard.

Two delivery modes feed the same in-memory list:

* push: `watch_reports` / `subscribe` re-run the scoped query on an interval
  and deliver the whole list whenever it changed (no diffs);
* pull: `ReportFeed.open` does one fetch up front and arms a loading timeout
  so the dashboard never waits forever for a subscription that never
  delivers.

Filtering (`filter_reports`) is pure and never goes back to the store.
"""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import date, datetime, tzinfo
from functools import lru_cache
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from pydantic import ValidationError as PydanticValidationError

from reptileguard.db import dynamo
from reptileguard.models.report import ReportFilter, SightingReport, ViewMode
from reptileguard.models.user import UserProfile

log = logging.getLogger(__name__)

REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "Asia/Kolkata")
POLL_INTERVAL = float(os.getenv("REPORT_POLL_INTERVAL", "2.0"))
LOADING_TIMEOUT = float(os.getenv("LOADING_TIMEOUT", "4.0"))


@lru_cache(maxsize=1)
def default_tz() -> tzinfo:
    return ZoneInfo(REPORT_TIMEZONE)


# ----------------------------
# Scoped queries
# ----------------------------

def sort_newest_first(reports: List[SightingReport]) -> List[SightingReport]:
    return sorted(reports, key=lambda r: r.timestamp, reverse=True)


def _parse_reports(items: List[Dict[str, Any]]) -> List[SightingReport]:
    # one malformed record must not take the whole dashboard down
    reports = []
    for item in items:
        try:
            reports.append(SightingReport.model_validate(item))
        except PydanticValidationError as e:
            log.warning("Skipping unreadable report %s: %s", item.get("id"), e)
    return reports


def fetch_reports(principal: UserProfile) -> List[SightingReport]:
    """
    One-shot fetch of the principal's scope. Officers get every report in
    store order (newest first); citizens get their own, sorted here because
    the user index carries no sort key.
    """
    if principal.is_officer:
        return _parse_reports(dynamo.query_all_reports())
    return sort_newest_first(_parse_reports(dynamo.query_user_reports(principal.id)))


# ----------------------------
# Filtering
# ----------------------------

def default_filter(principal: UserProfile) -> ReportFilter:
    if principal.is_officer:
        return ReportFilter(
            view_mode=ViewMode.REGION,
            state=principal.state or "",
            district=principal.district or "",
        )
    return ReportFilter(view_mode=ViewMode.MY, state=principal.state or "")


def _report_day(report: SightingReport, tz: tzinfo) -> date:
    return datetime.fromtimestamp(report.timestamp / 1000, tz).date()


def _matches_search(report: SightingReport, needle: str) -> bool:
    haystack = (
        report.id,
        report.reptileData.name,
        report.reptileData.scientificName,
        report.userName,
        report.location.village,
        report.location.taluk,
        report.location.district,
        report.location.landmark,
    )
    return any(needle in (field or "").lower() for field in haystack)


def report_matches(
    report: SightingReport,
    principal: UserProfile,
    flt: ReportFilter,
    tz: tzinfo,
) -> bool:
    if not principal.is_officer:
        # citizens only ever see their own reports, whatever else is set
        if report.userId != principal.id:
            return False
    elif flt.view_mode == ViewMode.MY:
        if report.userId != principal.id:
            return False
    else:
        if flt.state:
            if report.location.state != flt.state:
                return False
            if flt.district and report.location.district != flt.district:
                return False

    if flt.status != "ALL" and report.status != flt.status:
        return False

    if flt.start_date or flt.end_date:
        day = _report_day(report, tz)
        if flt.start_date and day < flt.start_date:
            return False
        if flt.end_date and day > flt.end_date:
            return False

    needle = flt.search.strip().lower()
    if needle and not _matches_search(report, needle):
        return False

    return True


def filter_reports(
    reports: List[SightingReport],
    principal: UserProfile,
    flt: ReportFilter,
    tz: Optional[tzinfo] = None,
) -> List[SightingReport]:
    """Pure, order-preserving narrowing of an already fetched list."""
    tz = tz or default_tz()
    return [r for r in reports if report_matches(r, principal, flt, tz)]


# ----------------------------
# Push mode
# ----------------------------

async def watch_reports(
    principal: UserProfile,
    *,
    interval: float = POLL_INTERVAL,
) -> AsyncIterator[List[SightingReport]]:
    """
    Yield the principal's whole report list each time it changes.
    Store errors propagate to the consumer and end the stream.
    """
    last = None
    while True:
        reports = await asyncio.to_thread(fetch_reports, principal)
        fingerprint = [r.model_dump(mode="json") for r in reports]
        if fingerprint != last:
            last = fingerprint
            yield reports
        await asyncio.sleep(interval)


class Subscription:
    """Handle for a running watch; cancel() releases it."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        self._task.cancel()


def subscribe(
    principal: UserProfile,
    on_snapshot: Callable[[List[SightingReport]], None],
    on_error: Optional[Callable[[Exception], None]] = None,
    *,
    interval: float = POLL_INTERVAL,
) -> Subscription:
    """Must be called from a running event loop."""

    async def _run() -> None:
        try:
            async for snapshot in watch_reports(principal, interval=interval):
                on_snapshot(snapshot)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("Realtime subscription for %s stopped: %s", principal.id, e)
            if on_error:
                on_error(e)

    return Subscription(asyncio.get_running_loop().create_task(_run()))


# ----------------------------
# Dashboard state
# ----------------------------

class ReportFeed:
    """
    In-memory dashboard for one principal: the current list, a loading flag,
    the last error and the active filter.
    """

    def __init__(
        self,
        principal: UserProfile,
        *,
        interval: float = POLL_INTERVAL,
        loading_timeout: float = LOADING_TIMEOUT,
        tz: Optional[tzinfo] = None,
    ):
        self.principal = principal
        self.interval = interval
        self.loading_timeout = loading_timeout
        self.tz = tz
        self.reports: List[SightingReport] = []
        self.loading = False
        self.error: Optional[Exception] = None
        self.filter = default_filter(principal)
        self._subscription: Optional[Subscription] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

    async def open(self) -> None:
        self.loading = True
        self._closed = False
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.loading_timeout, self._loading_done)
        self._subscription = subscribe(
            self.principal, self._on_snapshot, self._on_error, interval=self.interval
        )
        try:
            initial = await asyncio.to_thread(fetch_reports, self.principal)
        except Exception as e:
            # the timeout still ends the spinner; the subscription may recover
            log.warning("Initial report fetch failed for %s: %s", self.principal.id, e)
            self.error = e
            return
        if not self._closed:
            self.reports = initial
            self.loading = False

    def close(self) -> None:
        self._closed = True
        if self._subscription:
            self._subscription.cancel()
        if self._timer:
            self._timer.cancel()

    def _loading_done(self) -> None:
        self.loading = False

    def _on_snapshot(self, reports: List[SightingReport]) -> None:
        if self._closed:
            return
        self.reports = reports
        self.loading = False

    def _on_error(self, error: Exception) -> None:
        # keep the last good list on screen
        self.error = error
        self.loading = False

    # ---- filter controls ----

    def set_view_mode(self, mode: ViewMode) -> None:
        if not self.principal.is_officer:
            return
        if mode == ViewMode.REGION:
            self.filter = self.filter.model_copy(
                update={
                    "view_mode": mode,
                    "state": self.principal.state,
                    "district": self.principal.district,
                }
            )
        else:
            self.filter = self.filter.model_copy(update={"view_mode": mode})

    def set_state(self, state: str) -> None:
        self.filter = self.filter.with_state(state)

    def update_filter(self, **changes) -> None:
        if "state" in changes and "district" not in changes:
            changes["district"] = ""
        self.filter = self.filter.model_copy(update=changes)

    def reset_filters(self) -> None:
        self.filter = default_filter(self.principal).model_copy(
            update={"view_mode": self.filter.view_mode}
        )

    def visible(self) -> List[SightingReport]:
        return filter_reports(self.reports, self.principal, self.filter, self.tz)
