"""Transaction bundle builder: Decision -> ordered TransactionSteps."""
import logging

from rebalancer.core.config import AssetConfig, Config, RouteStrategyConfig
from rebalancer.core.errors import BuildError
from rebalancer.models import Action, Decision, OutputRef, StepVerb, TransactionStep

logger = logging.getLogger(__name__)


ROUTER_PROTOCOL = "enso"
TOKEN_PROTOCOL = "erc20"


def validate_references(steps: list[TransactionStep]) -> None:
    """Check every output reference points strictly backwards.

    Raises:
        BuildError: On a forward, self or negative reference
    """
    for index, step in enumerate(steps):
        ref = step.references
        if ref is not None and not 0 <= ref < index:
            raise BuildError(f"Step {index} references step {ref}; must reference an earlier step")


class BundleBuilder:
    """Translates a Decision into an ordered list of on-chain steps.

    Deterministic: the same decision and configuration always produce the
    same steps. Configuration gaps are reported before any chain call.

    Route strategies:
        leverage:   [approve router] -> route input->collateral -> [approve pool] -> deposit output
        deleverage: [approve router] -> route collateral->debt asset -> [approve pool] -> repay output
    """

    def __init__(
        self,
        assets: dict[str, AssetConfig],
        strategies: dict[str, RouteStrategyConfig],
        pool: str | None,
        router_spender: str | None,
        protocol: str = "aave-v3",
        default_slippage_bps: int = 300,
    ):
        self.assets = assets
        self.strategies = strategies
        self.pool = pool
        self.router_spender = router_spender
        self.protocol = protocol
        self.default_slippage_bps = default_slippage_bps

    @classmethod
    def from_config(cls, config: Config) -> "BundleBuilder":
        return cls(
            assets=config.assets,
            strategies=config.strategies,
            pool=config.protocol.pool,
            router_spender=config.router.spender,
            protocol=config.protocol.name,
            default_slippage_bps=config.router.slippage_bps,
        )

    def _strategy(self, action: Action) -> RouteStrategyConfig:
        strategy = self.strategies.get(action.value)
        if strategy is None:
            raise BuildError(f"No route strategy configured for {action.value}")
        return strategy

    def _asset(self, symbol: str, action: Action) -> AssetConfig:
        asset = self.assets.get(symbol)
        if asset is None or not asset.address:
            raise BuildError(f"Asset {symbol} used by {action.value} strategy is not configured")
        return asset

    def _require_contracts(self, action: Action) -> tuple[str, str]:
        if not self.pool:
            raise BuildError(f"Lending pool address not configured for {action.value}")
        if not self.router_spender:
            raise BuildError(f"Router spender address not configured for {action.value}")
        return self.pool, self.router_spender

    def _route_steps(
        self,
        amount: int,
        strategy: RouteStrategyConfig,
        source: AssetConfig,
        destination: AssetConfig,
        router: str,
    ) -> list[TransactionStep]:
        steps = []
        if strategy.approve:
            steps.append(
                TransactionStep(
                    protocol=TOKEN_PROTOCOL,
                    verb=StepVerb.APPROVE,
                    input_asset=source.address,
                    amount=amount,
                    target=source.address,
                    spender=router,
                )
            )
        steps.append(
            TransactionStep(
                protocol=ROUTER_PROTOCOL,
                verb=StepVerb.ROUTE,
                input_asset=source.address,
                output_asset=destination.address,
                amount=amount,
                target=router,
                slippage_bps=(
                    strategy.slippage_bps
                    if strategy.slippage_bps is not None
                    else self.default_slippage_bps
                ),
            )
        )
        return steps

    def build(self, decision: Decision) -> list[TransactionStep]:
        """Build the step sequence realizing decision.

        Raises:
            BuildError: If contracts or assets for the decision are not configured
        """
        if decision.is_hold:
            logger.debug("Hold decision: empty bundle")
            return []

        action = decision.action
        strategy = self._strategy(action)
        source = self._asset(strategy.input_asset, action)
        destination = self._asset(strategy.output_asset, action)
        pool, router = self._require_contracts(action)

        steps = self._route_steps(decision.amount, strategy, source, destination, router)
        route_index = len(steps) - 1

        if action is Action.LEVERAGE:
            final_verb = StepVerb.DEPOSIT
        elif action is Action.DELEVERAGE:
            final_verb = StepVerb.REPAY
        else:
            raise BuildError(f"Unsupported action {action.value}")

        if strategy.approve_pool:
            steps.append(
                TransactionStep(
                    protocol=TOKEN_PROTOCOL,
                    verb=StepVerb.APPROVE,
                    input_asset=destination.address,
                    amount=OutputRef(route_index),
                    target=destination.address,
                    spender=pool,
                )
            )

        steps.append(
            TransactionStep(
                protocol=self.protocol,
                verb=final_verb,
                input_asset=destination.address,
                amount=OutputRef(route_index),
                target=pool,
            )
        )

        validate_references(steps)

        logger.info(
            f"Built {action.value} bundle: {len(steps)} steps "
            f"({source.symbol} -> {destination.symbol}, amount={decision.amount})"
        )
        return steps
