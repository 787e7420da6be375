"""Session manager: per-account rebalancing schedules."""
import asyncio
import logging
import uuid

from web3 import Web3

from rebalancer.advisory.client import AdvisoryClient
from rebalancer.bundles.builder import BundleBuilder
from rebalancer.collectors.market_signal import MarketSignalFetcher
from rebalancer.collectors.position_reader import PositionReader
from rebalancer.core.chat_log import ChatSink
from rebalancer.core.errors import RebalancerError, SessionError
from rebalancer.core.executor import TransactionExecutor
from rebalancer.core.notification_bus import NotificationBus, Notifier
from rebalancer.models import (
    CycleReport,
    CycleStage,
    MarketSignal,
    PositionSnapshot,
    Session,
    SessionState,
    StepOutcome,
    StepStatus,
)

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns every session and runs one cycle loop per active session.

    Responsibilities:
    1. Register sessions and enforce lifecycle transitions
    2. Run cycles: observe -> advise -> build -> execute
    3. Narrate every stage on the notification bus
    4. Stop sessions cooperatively (in-flight steps are never interrupted)
    """

    def __init__(
        self,
        signal_fetcher: MarketSignalFetcher,
        position_reader: PositionReader,
        advisory_client: AdvisoryClient,
        bundle_builder: BundleBuilder,
        executor: TransactionExecutor,
        bus: NotificationBus,
        interval_seconds: float = 50.0,
        chat_log: ChatSink | None = None,
    ):
        """Initialize the session manager.

        Args:
            signal_fetcher: Market signal source
            position_reader: Lending position source
            advisory_client: Decision oracle client
            bundle_builder: Decision -> transaction steps
            executor: Shared transaction executor
            bus: Notification bus for session narration
            interval_seconds: Delay between the end of one cycle and the next
            chat_log: Optional sink that gets a chat created per session
        """
        self.signal_fetcher = signal_fetcher
        self.position_reader = position_reader
        self.advisory_client = advisory_client
        self.bundle_builder = bundle_builder
        self.executor = executor
        self.bus = bus
        self.interval_seconds = interval_seconds
        self.chat_log = chat_log

        self._sessions: dict[str, Session] = {}

        logger.info(f"Session manager initialized (interval={interval_seconds}s)")

    @property
    def is_running(self) -> bool:
        """Check if any session is live."""
        return bool(self.active_sessions())

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def active_sessions(self) -> list[Session]:
        """Sessions not yet stopped."""
        return [s for s in self._sessions.values() if s.is_live]

    async def start_session(self, account: str, session_id: str | None = None) -> str:
        """Start a rebalancing schedule for account.

        Runs the first cycle before returning, then schedules the rest.

        Args:
            account: Address whose position is managed
            session_id: Caller-supplied identifier (generated when omitted)

        Returns:
            The session identifier

        Raises:
            SessionError: Invalid account, or session_id names a stopped session
        """
        if not isinstance(account, str) or not Web3.is_address(account):
            raise SessionError(f"Invalid account address: {account!r}")
        account = Web3.to_checksum_address(account)
        session_id = session_id or uuid.uuid4().hex

        existing = self._sessions.get(session_id)
        if existing is not None:
            if existing.state is SessionState.STOPPED:
                raise SessionError(f"Session {session_id} was stopped and cannot be restarted")
            logger.info(f"Session {session_id} already {existing.state.value}")
            return session_id

        session = Session(session_id=session_id, account=account)
        self._sessions[session_id] = session

        if self.chat_log is not None:
            self.chat_log.create_chat(session_id)

        notifier = Notifier(self.bus, session_id)
        notifier.system(f"Session started for {account} (every {self.interval_seconds:g}s)")

        first_cycle = asyncio.create_task(self.run_cycle(session), name=f"session-{session_id}-cycle-1")
        session.task = first_cycle
        await first_cycle

        if session.stop_requested:
            # stop_session owns the transition to STOPPED
            return session_id

        session.state = SessionState.ACTIVE
        session.task = asyncio.create_task(self._run_loop(session), name=f"session-{session_id}")
        return session_id

    async def stop_session(self, session_id: str) -> None:
        """Stop a session; no-op when absent or already stopped.

        Waits for the in-flight cycle to finish its current step.
        """
        session = self._sessions.get(session_id)
        if session is None or session.state is SessionState.STOPPED:
            return

        session.state = SessionState.STOPPING
        session.stop_event.set()

        if session.task is not None:
            try:
                await session.task
            except asyncio.CancelledError:
                logger.info(f"Session {session_id} loop cancelled")
            session.task = None

        session.state = SessionState.STOPPED
        Notifier(self.bus, session_id).system("Session stopped")

    async def stop_all(self) -> None:
        """Stop every live session."""
        sessions = self.active_sessions()
        if sessions:
            logger.info(f"Stopping {len(sessions)} session(s)...")
        await asyncio.gather(*(self.stop_session(s.session_id) for s in sessions))

    async def _run_loop(self, session: Session) -> None:
        """Run cycles at the configured interval until stopped."""
        while not session.stop_requested:
            try:
                await asyncio.wait_for(session.stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            await self.run_cycle(session)

        logger.debug(
            "STEP: Session loop exited",
            extra={
                "extra_data": {
                    "action": "session_loop_exit",
                    "session_id": session.session_id,
                    "cycles": session.cycle_count,
                }
            },
        )

    async def _observe(self, account: str) -> tuple[MarketSignal, PositionSnapshot]:
        """Fetch the market signal and read the position concurrently.

        The first failure cancels the other call.
        """
        signal_task = asyncio.create_task(self.signal_fetcher.fetch())
        position_task = asyncio.create_task(self.position_reader.read(account))
        tasks = (signal_task, position_task)

        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

        return signal_task.result(), position_task.result()

    def _narrate_step(self, notifier: Notifier, index: int, outcome: StepOutcome) -> None:
        if outcome.status is StepStatus.CONFIRMED:
            notifier.system(f"Step {index} confirmed: {outcome.step.describe()} tx={outcome.tx_hash}")
        elif outcome.status is StepStatus.FAILED:
            notifier.system(f"Step {index} failed: {outcome.step.describe()} ({outcome.error})")

    async def run_cycle(self, session: Session) -> CycleReport:
        """Run one rebalancing cycle for session.

        Stage failures are reported and recorded; they never propagate.

        Returns:
            CycleReport describing how far the cycle got
        """
        session.cycle_count += 1
        cycle = session.cycle_count
        report = CycleReport(session_id=session.session_id, cycle=cycle)
        notifier = Notifier(self.bus, session.session_id)

        notifier.system(f"Cycle {cycle} started")

        try:
            # Observe
            report.signal, report.snapshot = await self._observe(session.account)
            snapshot = report.snapshot
            notifier.system(
                f"Position: health factor {snapshot.health_factor:.2f}, "
                f"LTV {snapshot.loan_to_value:.2%}, risk {snapshot.risk_level}"
            )
            notifier.system(
                f"Market: {report.signal.classification} "
                f"(volatility {report.signal.volatility:.4f})"
            )
            if session.stop_requested:
                return self._stopped(report, notifier)

            # Advise
            report.stage = CycleStage.ADVISE
            decision = await self.advisory_client.decide(
                report.snapshot, report.signal, stop_event=session.stop_event
            )
            report.decision = decision
            if decision.text:
                notifier.oracle(decision.text)
            notifier.system(f"Decision: {decision.describe()}")

            # Build
            report.stage = CycleStage.BUILD
            steps = self.bundle_builder.build(decision)
            if session.stop_requested:
                return self._stopped(report, notifier)

            # Execute
            report.stage = CycleStage.EXECUTE
            report.result = await self.executor.execute(
                steps,
                session.account,
                should_abort=session.stop_event.is_set,
                on_step=lambda index, outcome: self._narrate_step(notifier, index, outcome),
            )

            report.stage = CycleStage.DONE
            if decision.is_hold:
                notifier.system(f"Cycle {cycle} complete: hold, position unchanged")
            else:
                notifier.system(f"Cycle {cycle} complete. {report.result.summary()}")

        except RebalancerError as e:
            report.error = e
            logger.error(f"[{session.session_id}] cycle {cycle} failed at {report.stage.value}: {e}")
            notifier.system(f"Cycle {cycle} failed at {report.stage.value}: {e}")

        except Exception as e:
            report.error = e
            logger.exception(f"[{session.session_id}] unexpected error in cycle {cycle}: {e}")
            notifier.system(f"Cycle {cycle} failed at {report.stage.value}: {e}")

        return report

    def _stopped(self, report: CycleReport, notifier: Notifier) -> CycleReport:
        report.stopped = True
        notifier.system(f"Cycle {report.cycle} ended early: stop requested")
        return report
