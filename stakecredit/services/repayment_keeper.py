"""Background keeper that liquidates installments once their grace window closes."""

import asyncio
import logging
from typing import Dict, Optional

from stakecredit.models.exceptions import CreditError, VersionConflictError

from .repayment_processor import RepaymentProcessor


logger = logging.getLogger(__name__)

KEEPER_TRIGGER = "keeper"


class RepaymentKeeper:
    """Periodically run ``check_repayment`` for every overdue installment."""

    def __init__(self, processor: RepaymentProcessor, poll_interval_sec: float = 60.0, enabled: bool = True) -> None:
        """Create a keeper bound to one processor."""
        self._processor = processor
        self._poll_interval_sec = float(poll_interval_sec)
        self._enabled = enabled
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start polling loop in background task if enabled."""
        if not self._enabled:
            logger.info("Repayment keeper disabled by keeper.enabled=false")
            return
        if self.running:
            logger.info("Repayment keeper already running.")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="repayment-keeper")
        logger.info("Repayment keeper started interval=%ss", self._poll_interval_sec)

    async def stop(self) -> None:
        """Gracefully stop background polling task."""
        if not self._task:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Repayment keeper task cancelled.")
        finally:
            self._task = None

    async def _run_loop(self) -> None:
        """Main polling loop for repayment checks."""
        logger.info("Repayment keeper loop running.")
        while self._stop_event is not None and not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Unhandled error during repayment keeper cycle.")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval_sec)
            except asyncio.TimeoutError:
                continue

    async def run_once(self) -> Dict[str, int]:
        """Execute one cycle across every overdue installment.

        Returns:
            Dict[str, int]: Counts of checked, liquidated, defaulted, skipped and failed items.
        """
        summary = {"checked": 0, "liquidated": 0, "defaulted": 0, "skipped": 0, "failed": 0}
        overdue = self._processor.list_overdue()
        if not overdue:
            logger.debug("No overdue installments.")
            return summary

        logger.info("Repayment keeper cycle started overdue=%d", len(overdue))
        for item in overdue:
            summary["checked"] += 1
            try:
                report = self._processor.check_repayment(
                    item.contract_id,
                    sequence_no=item.sequence_no,
                    triggered_by=KEEPER_TRIGGER,
                )
            except VersionConflictError:
                logger.warning(
                    "Repayment check lost a race contract_id=%s sequence_no=%s",
                    item.contract_id,
                    item.sequence_no,
                )
                summary["skipped"] += 1
            except CreditError as exc:
                logger.warning(
                    "Repayment check refused contract_id=%s sequence_no=%s code=%s",
                    item.contract_id,
                    item.sequence_no,
                    exc.code,
                )
                summary["failed"] += 1
            except Exception:
                logger.exception(
                    "Failed repayment check contract_id=%s sequence_no=%s",
                    item.contract_id,
                    item.sequence_no,
                )
                summary["failed"] += 1
            else:
                if report.action == "LIQUIDATED":
                    summary["liquidated"] += 1
                elif report.action == "DEFAULTED":
                    summary["defaulted"] += 1
                else:
                    summary["skipped"] += 1
            # yield to the event loop between contracts
            await asyncio.sleep(0)
        logger.info("Repayment keeper cycle finished summary=%s", summary)
        return summary
