"""
StakeContext - one explicitly passed object holding a connected session
and everything bound to it.

    async with StakeContext.local(approve=click_approver) as ctx:
        challenge = await ctx.store.fetch(7)
        outcome = await ctx.pipeline.join_challenge(7, "0.1")

Nothing here is global: two contexts may point at different wallets,
networks or contracts in the same process.
"""

from __future__ import annotations

from typing import Callable, Optional

from .config import PipelineConfig, get_contract_address, load_env
from .covenant.store import ChallengeStore
from .pneuma.abi import ContractCapabilities
from .pneuma.ledger import LedgerClient
from .pneuma.network import NetworkGuard, NetworkProfile
from .pneuma.tx import TransactionPipeline
from .sigil.session import WalletSession
from .sigil.wallet import Approver, LocalWallet, WalletProvider
from .utils import now


class StakeContext:
    def __init__(
        self,
        provider: WalletProvider,
        *,
        network: Optional[NetworkProfile] = None,
        contract_address: Optional[str] = None,
        capabilities: Optional[ContractCapabilities] = None,
        config: Optional[PipelineConfig] = None,
        clock: Callable[[], int] = now,
    ) -> None:
        self.provider = provider
        self.network = network or NetworkProfile.from_env()
        self.config = config or PipelineConfig.from_env()
        self.session = WalletSession(provider)
        self.guard = NetworkGuard(self.session, settle_delay=self.config.settle_delay)
        self.ledger = LedgerClient.bind(
            self.session, contract_address or get_contract_address(), capabilities, self.config
        )
        self.store = ChallengeStore(self.ledger)
        self.pipeline = TransactionPipeline(
            self.ledger, self.guard, self.store, self.session, self.network, self.config, clock=clock
        )
        self._unsubscribe = self.session.on_identity_change(self.store.clear_derived)

    @classmethod
    def local(
        cls,
        *,
        approve: Optional[Approver] = None,
        network: Optional[NetworkProfile] = None,
        contract_address: Optional[str] = None,
        config: Optional[PipelineConfig] = None,
    ) -> "StakeContext":
        """Context around a LocalWallet using the key from ~/.codestake/.env."""
        load_env()
        network = network or NetworkProfile.from_env()
        kwargs = {"approve": approve} if approve is not None else {}
        wallet = LocalWallet.from_env([network], active_chain_id=network.chain_id, **kwargs)
        return cls(wallet, network=network, contract_address=contract_address, config=config)

    async def connect(self) -> str:
        return await self.session.connect()

    async def disconnect(self) -> None:
        self._unsubscribe()
        await self.session.close()
        aclose = getattr(self.provider, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> "StakeContext":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()
