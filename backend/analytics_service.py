"""
Cash Flow Analytics Service

Async entry point for the presentation layer. Each view:
1. resolves the per-call config (service config + request overrides)
2. reads what it needs from the RecordStore, in parallel on a thread pool
3. runs the pure computation and returns an immutable result

Reads are all-or-nothing. A failed read fails the view with
ExternalFetchError and the remaining reads are cancelled; a timeout or a set
cancel event raises CancellationError. Nothing is computed from partial data.
"""

from concurrent.futures import Executor
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging

from aging_service import build_timeline, classify_aging, list_overdue_items, top_counterparties
from analytics_config import AnalyticsConfig, resolve_config
from analytics_errors import CancellationError, ExternalFetchError, InsufficientDataError
from analytics_models import AgingView, ConversionCycleView, RunwayEstimate, VarianceRecord, WaterfallResult
from analytics_requests import (
    AgingViewRequest, ConversionCycleViewRequest, RunwayViewRequest, VarianceViewRequest,
    ViewRequest, WaterfallViewRequest
)
from conversion_cycle_service import (
    ConversionCycleInputs, average_inventory, average_outstanding, compute_conversion_cycle,
    working_capital_position
)
from record_store import RecordStore
from runway_service import apply_seasonality, estimate_runway, forecast_window
from variance_engine import analyze_variances
from waterfall_service import reconcile_waterfall

logger = logging.getLogger(__name__)


class CashFlowAnalyticsService:
    """
    Computes dashboard views for an organization from a RecordStore.

    The service holds no per-request state; one instance can serve
    concurrent requests.
    """

    def __init__(
        self,
        store: RecordStore,
        config: Optional[AnalyticsConfig] = None,
        executor: Optional[Executor] = None,
    ):
        self.store = store
        self.config = resolve_config(config)
        self.executor = executor  # None: the event loop's default executor

    def _config_for(self, request: ViewRequest) -> AnalyticsConfig:
        return self.config.with_overrides(request.config_overrides)

    @staticmethod
    def _check_cancelled(view: str, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError(f"{view} view cancelled by caller")

    async def _fetch_all(
        self,
        view: str,
        fetches: Dict[str, Callable[[], Any]],
        timeout: float,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """
        Run every fetch concurrently and return their results by name.

        The first failure, the timeout or the cancel event, whichever comes
        first, ends the wait and cancels whatever is still pending.
        """
        self._check_cancelled(view, cancel_event)

        loop = asyncio.get_running_loop()
        futures = {loop.run_in_executor(self.executor, fn): name for name, fn in fetches.items()}
        pending = set(futures)
        cancel_waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        deadline = loop.time() + timeout
        results: Dict[str, Any] = {}

        try:
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise CancellationError(f"{view} view timed out after {timeout}s")

                watched = set(pending)
                if cancel_waiter is not None:
                    watched.add(cancel_waiter)
                done, _ = await asyncio.wait(watched, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)

                if not done:
                    raise CancellationError(f"{view} view timed out after {timeout}s")
                if cancel_waiter is not None and cancel_waiter in done:
                    raise CancellationError(f"{view} view cancelled by caller")

                for future in done:
                    pending.discard(future)
                    name = futures[future]
                    error = future.exception()
                    if error is None:
                        results[name] = future.result()
                        continue
                    logger.warning(f"{view} view: fetch '{name}' failed: {error}")
                    if isinstance(error, ExternalFetchError):
                        raise error
                    raise ExternalFetchError(f"Fetch '{name}' failed: {error}", source=name) from error
        except CancellationError as e:
            logger.warning(str(e))
            raise
        finally:
            for future in pending:
                future.cancel()
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        return results

    def _timeout_for(self, request: ViewRequest, config: AnalyticsConfig) -> float:
        if request.timeout_seconds is not None:
            return request.timeout_seconds
        return config.fetch_timeout_seconds

    # =========================================================================
    # VIEWS
    # =========================================================================

    async def get_aging_view(
        self,
        request: AgingViewRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AgingView:
        """Aging for receivables and payables plus overdue, top and timeline."""
        config = self._config_for(request)
        org = request.organization_id

        data = await self._fetch_all(
            "aging",
            {
                "receivables": lambda: self.store.get_receivables(org),
                "payables": lambda: self.store.get_payables(org),
            },
            self._timeout_for(request, config),
            cancel_event,
        )
        receivables, payables = data["receivables"], data["payables"]

        view = AgingView(
            receivables=classify_aging(receivables, request.as_of, config),
            payables=classify_aging(payables, request.as_of, config),
            overdue_items=tuple(list_overdue_items(receivables, payables, request.as_of)),
            top_customers=tuple(top_counterparties(receivables, request.top_limit)),
            top_vendors=tuple(top_counterparties(payables, request.top_limit)),
            timeline=tuple(build_timeline(
                receivables, payables, request.as_of, request.as_of + timedelta(days=request.timeline_days)
            )),
        )
        logger.info(
            f"Aging view for organization {org} as of {request.as_of}: "
            f"AR {view.receivables.total_amount}, AP {view.payables.total_amount}, "
            f"{len(view.overdue_items)} overdue"
        )
        return view

    async def get_conversion_cycle_view(
        self,
        request: ConversionCycleViewRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ConversionCycleView:
        """
        DSO / DPO / DIO / CCC for the request period, with trends against the
        prior period when one is given, and the working-capital position as of
        request.as_of.

        Average inventory needs at least one snapshot inside each period and the
        position needs a snapshot on or before as_of; otherwise
        InsufficientDataError.
        """
        config = self._config_for(request)
        org = request.organization_id

        fetches = {
            "receivables": lambda: self.store.get_receivables(org),
            "payables": lambda: self.store.get_payables(org),
            "snapshots": lambda: self.store.get_snapshots(org, request.period_start, request.period_end),
            "latest_snapshot": lambda: self.store.get_latest_snapshot(org, request.as_of),
        }
        if request.has_prior_period:
            fetches["prior_snapshots"] = lambda: self.store.get_snapshots(
                org, request.prior_period_start, request.prior_period_end
            )

        data = await self._fetch_all("conversion_cycle", fetches, self._timeout_for(request, config), cancel_event)

        if data["latest_snapshot"] is None:
            raise InsufficientDataError(
                f"No working capital snapshot for organization {org} on or before {request.as_of}"
            )

        prior_metrics = None
        if request.has_prior_period:
            prior_inputs = ConversionCycleInputs(
                avg_receivables=average_outstanding(
                    data["receivables"], request.prior_period_start, request.prior_period_end
                ),
                avg_payables=average_outstanding(
                    data["payables"], request.prior_period_start, request.prior_period_end
                ),
                avg_inventory=average_inventory(data["prior_snapshots"]),
                credit_sales=request.prior_credit_sales,
                cogs=request.prior_cogs,
                period_days=request.prior_period_days,
            )
            prior_metrics = compute_conversion_cycle(prior_inputs, config=config)

        inputs = ConversionCycleInputs(
            avg_receivables=average_outstanding(data["receivables"], request.period_start, request.period_end),
            avg_payables=average_outstanding(data["payables"], request.period_start, request.period_end),
            avg_inventory=average_inventory(data["snapshots"]),
            credit_sales=request.credit_sales,
            cogs=request.cogs,
            period_days=request.period_days,
        )
        metrics = compute_conversion_cycle(inputs, prior=prior_metrics, config=config)

        logger.info(
            f"Conversion cycle view for organization {org} "
            f"{request.period_start}..{request.period_end}: ccc={metrics.ccc!r}"
        )
        return ConversionCycleView(
            metrics=metrics,
            position=working_capital_position(data["latest_snapshot"]),
            prior_metrics=prior_metrics,
        )

    async def get_runway_view(
        self,
        request: RunwayViewRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunwayEstimate:
        """
        Runway from the forecast entries in the horizon window.

        Without an explicit current_cash the latest snapshot supplies it as
        current assets less inventory; no snapshot is InsufficientDataError.
        """
        config = self._config_for(request)
        org = request.organization_id
        window_start, window_end = forecast_window(request.as_of, config.forecast_horizon_months)

        fetches = {
            "entries": lambda: self.store.get_forecast_entries(org, window_start, window_end),
        }
        if request.current_cash is None:
            fetches["snapshot"] = lambda: self.store.get_latest_snapshot(org, request.as_of)
        if request.apply_seasonality:
            fetches["patterns"] = lambda: self.store.get_seasonal_patterns(org)

        data = await self._fetch_all("runway", fetches, self._timeout_for(request, config), cancel_event)

        if request.current_cash is not None:
            current_cash = request.current_cash
        else:
            snapshot = data["snapshot"]
            if snapshot is None:
                raise InsufficientDataError(
                    f"No working capital snapshot for organization {org} on or before {request.as_of}"
                )
            current_cash = snapshot.current_assets

        entries = data["entries"]
        if request.apply_seasonality:
            entries = apply_seasonality(entries, data["patterns"])

        estimate = estimate_runway(entries, current_cash, request.as_of, config)
        logger.info(f"Runway view for organization {org} as of {request.as_of}: {estimate.runway_days!r} days")
        return estimate

    async def get_waterfall_view(
        self,
        request: WaterfallViewRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WaterfallResult:
        config = self._config_for(request)
        self._check_cancelled("waterfall", cancel_event)
        result = reconcile_waterfall(request.to_line_items(), config)
        logger.info(
            f"Waterfall view for organization {request.organization_id}: "
            f"{len(result.steps)} steps, net {result.net_total}"
        )
        return result

    async def get_variance_view(
        self,
        request: VarianceViewRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[VarianceRecord]:
        config = self._config_for(request)
        self._check_cancelled("variance", cancel_event)
        records = analyze_variances(request.to_variance_inputs(), config)
        logger.info(f"Variance view for organization {request.organization_id}: {len(records)} metrics")
        return records
