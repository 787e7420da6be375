"""Transaction executor for step bundles."""
import asyncio
import logging
from typing import Any, Callable

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from rebalancer.bundles.router import RouteClient
from rebalancer.collectors.chain.abis import ERC20_ABI, LENDING_POOL_ABI, TRANSFER_TOPIC, VARIABLE_RATE_MODE
from rebalancer.collectors.chain.connection import ChainConnection, SubmissionError
from rebalancer.core.errors import ExecutionError, ExecutionErrorKind
from rebalancer.models import (
    BundleExecutionResult,
    BundleStatus,
    OutputRef,
    StepOutcome,
    StepStatus,
    StepVerb,
    TransactionStep,
)

logger = logging.getLogger(__name__)


# Node error substrings, checked in order
ERROR_PATTERNS: list[tuple[ExecutionErrorKind, tuple[str, ...]]] = [
    (ExecutionErrorKind.INSUFFICIENT_FUNDS, ("insufficient funds",)),
    (
        ExecutionErrorKind.NONCE_CONFLICT,
        ("nonce too low", "nonce too high", "already known", "invalid nonce", "nonce has already been used"),
    ),
    (
        ExecutionErrorKind.UNDERPRICED,
        ("underpriced", "less than block base fee", "fee cap less than", "tip higher than fee cap"),
    ),
    (
        ExecutionErrorKind.GAS_ESTIMATION_FAILED,
        ("gas required exceeds allowance", "intrinsic gas too low", "cannot estimate gas"),
    ),
]


def _error_message(exc: BaseException) -> str:
    """Extract the node's message from a web3 exception."""
    if exc.args and isinstance(exc.args[0], dict):
        return str(exc.args[0].get("message", exc.args[0]))
    message = getattr(exc, "message", None)
    return str(message) if message else str(exc)


def classify_exception(exc: BaseException, stage: str = "send") -> ExecutionError:
    """Map a submission or confirmation failure to an ExecutionError.

    Args:
        exc: Exception raised by web3, the node or the routing API
        stage: "route", "encode", "prepare", "estimate", "sign", "send" or "receipt"
    """
    if isinstance(exc, (TimeExhausted, asyncio.TimeoutError)):
        return ExecutionError(ExecutionErrorKind.TIMEOUT, f"{stage}: {exc}", cause=exc)

    message = _error_message(exc)
    lowered = message.lower()

    for kind, patterns in ERROR_PATTERNS:
        if any(pattern in lowered for pattern in patterns):
            return ExecutionError(kind, message, cause=exc)

    if stage == "estimate":
        return ExecutionError(ExecutionErrorKind.GAS_ESTIMATION_FAILED, message, cause=exc)

    if isinstance(exc, ContractLogicError) or "execution reverted" in lowered:
        reason = message.replace("execution reverted:", "").strip() or "execution reverted"
        return ExecutionError(ExecutionErrorKind.REVERTED, message, reason=reason, cause=exc)

    return ExecutionError(ExecutionErrorKind.UNKNOWN, message, cause=exc)


def _hex(value: Any) -> str:
    return value if isinstance(value, str) else Web3.to_hex(value)


def transferred_to(receipt: Any, token: str, recipient: str) -> int | None:
    """Sum ERC-20 Transfer amounts of token to recipient found in a receipt.

    Returns:
        Total transferred, or None when no matching Transfer log exists
    """
    token = token.lower()
    recipient = recipient.lower()[2:]
    total = None

    for log in receipt.get("logs", []) or []:
        topics = log.get("topics") or []
        if len(topics) < 3 or str(log.get("address", "")).lower() != token:
            continue
        if _hex(topics[0]).lower() != TRANSFER_TOPIC:
            continue
        if not _hex(topics[2]).lower().endswith(recipient):
            continue
        data = _hex(log.get("data") or "0x0")
        total = (total or 0) + int(data, 16)

    return total


class TransactionExecutor:
    """Submits bundle steps in order, confirming each before the next.

    Fail-fast: the first failed step marks every later step SKIPPED.
    Nothing is retried and confirmed steps are never rolled back.
    """

    def __init__(
        self,
        connection: ChainConnection,
        router: RouteClient,
        receipt_timeout: float = 120.0,
    ):
        """Initialize executor.

        Args:
            connection: Shared chain connection (owns the nonce lock)
            router: Routing API client for route steps
            receipt_timeout: Seconds to wait for each receipt
        """
        self.connection = connection
        self.router = router
        self.receipt_timeout = receipt_timeout

    async def encode(self, step: TransactionStep, amount: int, account: str) -> dict[str, Any]:
        """Build the unsigned transaction for a step with a resolved amount."""
        if step.verb is StepVerb.APPROVE:
            token = self.connection.contract(step.target, ERC20_ABI)
            data = token.encode_abi("approve", args=[Web3.to_checksum_address(step.spender), amount])
            return {"to": token.address, "data": data, "value": 0}

        if step.verb is StepVerb.ROUTE:
            quote = await self.router.quote(
                from_address=self.connection.address,
                token_in=step.input_asset,
                token_out=step.output_asset,
                amount_in=amount,
                slippage_bps=step.slippage_bps or 0,
            )
            return {"to": quote.to, "data": quote.data, "value": quote.value}

        pool = self.connection.contract(step.target, LENDING_POOL_ABI)
        asset = Web3.to_checksum_address(step.input_asset)
        account = Web3.to_checksum_address(account)

        if step.verb is StepVerb.DEPOSIT:
            data = pool.encode_abi("supply", args=[asset, amount, account, 0])
        elif step.verb is StepVerb.BORROW:
            data = pool.encode_abi("borrow", args=[asset, amount, VARIABLE_RATE_MODE, 0, account])
        elif step.verb is StepVerb.REPAY:
            data = pool.encode_abi("repay", args=[asset, amount, VARIABLE_RATE_MODE, account])
        elif step.verb is StepVerb.REDEEM:
            data = pool.encode_abi("withdraw", args=[asset, amount, self.connection.address])
        else:
            raise ValueError(f"Unsupported step verb {step.verb}")

        return {"to": pool.address, "data": data, "value": 0}

    def _resolve_amount(
        self, index: int, step: TransactionStep, outcomes: list[StepOutcome]
    ) -> int | None:
        """Resolve a step's amount; None means the referenced step did not confirm.

        Raises:
            ExecutionError: For invalid references or a confirmed step without output
        """
        if not isinstance(step.amount, OutputRef):
            return step.amount

        ref = step.amount.step
        if not 0 <= ref < index:
            raise ExecutionError(
                ExecutionErrorKind.UNKNOWN, f"step {index} references step {ref}, not an earlier step"
            )

        referenced = outcomes[ref]
        if referenced.status is not StepStatus.CONFIRMED:
            return None
        if referenced.output_amount is None:
            raise ExecutionError(
                ExecutionErrorKind.UNKNOWN, f"step {ref} confirmed without a resolvable output amount"
            )
        return referenced.output_amount

    async def _run_step(self, outcome: StepOutcome, amount: int, account: str) -> None:
        step = outcome.step
        outcome.resolved_amount = amount

        stage = "route" if step.verb is StepVerb.ROUTE else "encode"
        try:
            tx = await self.encode(step, amount, account)
        except Exception as e:
            outcome.status = StepStatus.FAILED
            outcome.error = classify_exception(e, stage)
            return

        try:
            outcome.tx_hash = await self.connection.send_transaction(tx)
        except SubmissionError as e:
            outcome.status = StepStatus.FAILED
            outcome.error = classify_exception(e.cause, e.stage)
            return

        outcome.status = StepStatus.SUBMITTED
        logger.info(f"Submitted {step.describe()}: {outcome.tx_hash}")

        try:
            receipt = await self.connection.wait_for_receipt(outcome.tx_hash, timeout=self.receipt_timeout)
        except Exception as e:
            outcome.status = StepStatus.FAILED
            outcome.error = classify_exception(e, "receipt")
            return

        if receipt.get("status") != 1:
            outcome.status = StepStatus.FAILED
            outcome.error = ExecutionError(
                ExecutionErrorKind.REVERTED,
                f"transaction {outcome.tx_hash} reverted",
                reason="transaction reverted",
            )
            return

        if step.output_asset:
            outcome.output_amount = transferred_to(receipt, step.output_asset, self.connection.address)
        else:
            outcome.output_amount = amount

        outcome.status = StepStatus.CONFIRMED
        logger.info(
            f"Confirmed {step.describe()}: {outcome.tx_hash} (output={outcome.output_amount})"
        )

    async def execute(
        self,
        steps: list[TransactionStep],
        account: str,
        should_abort: Callable[[], bool] | None = None,
        on_step: Callable[[int, StepOutcome], None] | None = None,
    ) -> BundleExecutionResult:
        """Execute steps strictly in order.

        Args:
            steps: Bundle from the builder
            account: Position owner (onBehalfOf for protocol calls)
            should_abort: Checked before each step; True stops the bundle
            on_step: Called with (index, outcome) once each step settles

        Returns:
            BundleExecutionResult with one outcome per step
        """
        def notify(index: int, outcome: StepOutcome) -> None:
            if on_step:
                on_step(index, outcome)

        result = BundleExecutionResult(outcomes=[StepOutcome(step=s) for s in steps])
        outcomes = result.outcomes
        aborted = False
        halted = False

        for index, outcome in enumerate(outcomes):
            if halted or aborted:
                outcome.status = StepStatus.SKIPPED
                notify(index, outcome)
                continue

            if should_abort is not None and should_abort():
                logger.warning(f"Bundle aborted before step {index}")
                aborted = True
                outcome.status = StepStatus.SKIPPED
                notify(index, outcome)
                continue

            try:
                amount = self._resolve_amount(index, outcome.step, outcomes)
            except ExecutionError as e:
                outcome.status = StepStatus.FAILED
                outcome.error = e
                halted = True
                notify(index, outcome)
                continue

            if amount is None:
                logger.warning(f"Step {index} skipped: referenced step did not confirm")
                outcome.status = StepStatus.SKIPPED
                halted = True
                notify(index, outcome)
                continue

            await self._run_step(outcome, amount, account)
            notify(index, outcome)

            if outcome.status is StepStatus.FAILED:
                logger.error(f"Step {index} failed: {outcome.error}")
                halted = True

        if aborted:
            result.status = BundleStatus.ABORTED
        elif all(o.status is StepStatus.CONFIRMED for o in outcomes):
            result.status = BundleStatus.COMPLETED
        else:
            result.status = BundleStatus.PARTIALLY_FAILED

        logger.info(f"Bundle finished: {result.status.value} ({len(result.confirmed)}/{len(outcomes)} confirmed)")
        return result
