"""
Shared fixtures: an in-memory chain that plays wallet, node and CodeStake
contract at once.

``FakeChain`` answers the EIP-1193 requests the library makes, decodes
contract calldata with the bundled ABI and keeps per-method call counters
so tests can assert what did (and did not) reach the ledger.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any, Optional

import pytest

from codestake.config import DEFAULT_CONTRACT_ADDRESS, PipelineConfig
from codestake.context import StakeContext
from codestake.pneuma.abi import ContractCapabilities
from codestake.pneuma.errors import RpcError
from codestake.pneuma.network import EDU_CHAIN_TESTNET
from codestake.sigil.wallet import ACCOUNTS_CHANGED, CHAIN_CHANGED, EventEmitter
from codestake.utils import ZERO_ADDRESS, same_address

NOW = 1_800_000_000
DAY = 86400
GAS_ESTIMATE = 50_000
GAS_PRICE = 10**9
ETHER = 10**18

ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
CAROL = "0x" + "33" * 20
DAVE = "0x" + "44" * 20
CONTRACT = DEFAULT_CONTRACT_ADDRESS


class FakeChain(EventEmitter):
    """Wallet + node + contract in one object."""

    def __init__(
        self,
        *,
        chain_id: int = EDU_CHAIN_TESTNET.chain_id,
        account: str = ALICE,
        balance: int = 100 * ETHER,
        capabilities: Optional[ContractCapabilities] = None,
    ) -> None:
        super().__init__()
        self.capabilities = capabilities or ContractCapabilities.default()
        self.chain_id = chain_id
        self.known_chains = {EDU_CHAIN_TESTNET.chain_id, 1}
        self.accounts = [account]
        self.balances: dict[str, int] = {account.lower(): balance}
        self.now = NOW

        self.calls: Counter[str] = Counter()
        self.view_calls: Counter[str] = Counter()
        self.prompts = 0
        self.approve = True
        self.reject_switch = False
        self.ignore_switch = False
        self.added_networks: list[dict] = []
        self.revert_estimate = False
        self.revert_receipt = False
        self.hold_receipts = False
        self.malformed_ids: set[int] = set()
        self.fail_next: dict[str, list[BaseException]] = {}
        self.delays: dict[str, float] = {}

        self.counter = 0
        self.challenges: dict[int, dict[str, Any]] = {}
        self.vault: dict[str, int] = {}
        self.earned: dict[str, int] = {}
        self.staked: dict[str, int] = {}
        self.receipts: dict[str, dict] = {}
        self.block = 100

    # ---- helpers for tests ----

    def fail(self, method: str, *errors: BaseException) -> None:
        """Raise ``errors`` (in order) from the next calls to ``method``."""
        self.fail_next.setdefault(method, []).extend(errors)

    def add_challenge(
        self,
        participants: list[str],
        unlocks: list[int],
        *,
        total: int = ETHER,
        staked: int = 0,
        creator: str = ALICE,
        completed: int = 0,
    ) -> int:
        self.counter += 1
        n = len(unlocks)
        self.challenges[self.counter] = {
            "name": f"Fixture {self.counter}",
            "track": "Python",
            "creator": creator,
            "start": self.now - DAY,
            "end": unlocks[-1],
            "staked": staked,
            "total": total,
            "active": True,
            "participants": list(participants),
            "timestamps": list(unlocks),
            "rewards": [total // n] * n,
            "completed": [i < completed for i in range(n)],
            "winners": [creator if i < completed else ZERO_ADDRESS for i in range(n)],
            "joined": set(),
        }
        return self.counter

    # ---- EIP-1193 ----

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        params = params or []
        self.calls[method] += 1
        queued = self.fail_next.get(method)
        if queued:
            raise queued.pop(0)
        if self.delays.get(method):
            await asyncio.sleep(self.delays[method])

        if method == "eth_requestAccounts":
            return list(self.accounts)
        if method == "eth_accounts":
            return list(self.accounts)
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "eth_getBalance":
            return hex(self.balances.get(params[0].lower(), 0))
        if method == "eth_gasPrice":
            return hex(GAS_PRICE)
        if method == "wallet_switchEthereumChain":
            return self._switch(int(params[0]["chainId"], 16))
        if method == "wallet_addEthereumChain":
            self.added_networks.append(params[0])
            self.known_chains.add(int(params[0]["chainId"], 16))
            return None
        if method == "eth_call":
            return self._view(params[0])
        if method == "eth_estimateGas":
            if self.revert_estimate:
                raise RpcError(3, "execution reverted")
            return hex(GAS_ESTIMATE)
        if method == "eth_sendTransaction":
            return self._send(params[0])
        if method == "eth_getTransactionReceipt":
            if self.hold_receipts:
                return None
            return self.receipts.get(params[0])
        raise RpcError(-32601, f"Method {method} not found")

    def _switch(self, chain_id: int) -> None:
        if self.reject_switch:
            raise RpcError(4001, "User rejected the request.")
        if chain_id not in self.known_chains:
            raise RpcError(4902, "Unrecognized chain ID")
        if not self.ignore_switch and chain_id != self.chain_id:
            self.chain_id = chain_id
            self.emit(CHAIN_CHANGED, hex(chain_id))
        return None

    def switch_account(self, account: Optional[str]) -> None:
        self.accounts = [account] if account else []
        if account:
            self.balances.setdefault(account.lower(), 0)
        self.emit(ACCOUNTS_CHANGED, list(self.accounts))

    # ---- contract views ----

    def _view(self, tx: dict) -> str:
        spec = self.capabilities.by_selector(tx["data"])
        assert spec is not None, f"unknown selector in {tx['data'][:10]}"
        self.view_calls[spec.name] += 1
        args = spec.decode_args(tx["data"])

        if spec.name == "challenges":
            (cid,) = args
            if cid in self.malformed_ids:
                return "0x" + "00" * 10
            c = self.challenges.get(cid)
            if c is None:
                return spec.encode_result(["", "", ZERO_ADDRESS, 0, 0, 0, 0, False])
            return spec.encode_result(
                [c["name"], c["track"], c["creator"], c["start"], c["end"], c["staked"], c["total"], c["active"]]
            )
        if spec.name == "getChallengeDetails":
            (cid,) = args
            c = self.challenges.get(cid)
            if c is None:
                return spec.encode_result([[], [], [], [], []])
            return spec.encode_result(
                [c["participants"], c["timestamps"], c["rewards"], c["completed"], c["winners"]]
            )
        if spec.name == "challengeCounter":
            return spec.encode_result([self.counter])
        if spec.name == "getActiveChallenges":
            return spec.encode_result([[i for i, c in sorted(self.challenges.items()) if c["active"]]])
        if spec.name == "getWalletSummary":
            (user,) = args
            key = user.lower()
            return spec.encode_result(
                [self.vault.get(key, 0), self.earned.get(key, 0), self.staked.get(key, 0)]
            )
        if spec.name == "hasJoined":
            cid, user = args
            return spec.encode_result([user.lower() in self.challenges[cid]["joined"]])
        raise AssertionError(f"unexpected view {spec.name}")

    # ---- contract writes ----

    def _send(self, tx: dict) -> str:
        self.prompts += 1
        if not self.approve:
            raise RpcError(4001, "User rejected the request.")
        sender = tx["from"]
        value = int(tx.get("value", "0x0"), 16)
        spec = self.capabilities.by_selector(tx["data"])
        assert spec is not None
        args = spec.decode_args(tx["data"])

        self.block += 1
        tx_hash = "0x" + f"{self.block:064x}"
        logs: list[dict] = []
        if not self.revert_receipt:
            self.balances[sender.lower()] = self.balances.get(sender.lower(), 0) - value
            logs = self._apply(spec.name, args, sender, value)
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "status": "0x0" if self.revert_receipt else "0x1",
            "blockNumber": hex(self.block),
            "gasUsed": hex(GAS_ESTIMATE),
            "logs": logs,
        }
        return tx_hash

    def _log(self, event: str, values: dict) -> dict:
        log = self.capabilities.events[event].encode_log(values)
        log["address"] = CONTRACT
        return log

    def _apply(self, name: str, args: tuple, sender: str, value: int) -> list[dict]:
        key = sender.lower()
        if name == "createChallenge":
            total, participants, timestamps = args
            self.counter += 1
            n = len(timestamps)
            self.challenges[self.counter] = {
                "name": "",
                "track": "",
                "creator": sender,
                "start": self.now,
                "end": timestamps[-1],
                "staked": value,
                "total": total,
                "active": True,
                "participants": list(participants),
                "timestamps": list(timestamps),
                "rewards": [total // n] * n,
                "completed": [False] * n,
                "winners": [ZERO_ADDRESS] * n,
                "joined": set(),
            }
            self.staked[key] = self.staked.get(key, 0) + value
            return [self._log("ChallengeCreated", {"challengeId": self.counter, "creator": sender, "totalStake": total})]
        if name == "joinChallenge":
            (cid,) = args
            c = self.challenges[cid]
            c["staked"] += value
            c["joined"].add(key)
            if not any(same_address(p, sender) for p in c["participants"]):
                c["participants"].append(sender)
            self.staked[key] = self.staked.get(key, 0) + value
            return []
        if name == "completeMilestone":
            cid, index = args
            c = self.challenges[cid]
            c["completed"][index] = True
            c["winners"][index] = sender
            self.earned[key] = self.earned.get(key, 0) + c["rewards"][index]
            return [self._log("MilestoneCompleted", {"challengeId": cid, "milestoneIndex": index, "winner": sender})]
        if name == "deposit":
            self.vault[key] = self.vault.get(key, 0) + value
            return []
        if name == "withdraw":
            (amount,) = args
            self.vault[key] = self.vault.get(key, 0) - amount
            self.balances[key] = self.balances.get(key, 0) + amount
            return []
        raise AssertionError(f"unexpected write {name}")


def fast_config(**overrides: Any) -> PipelineConfig:
    values: dict[str, Any] = dict(
        settle_delay=0.0,
        estimate_timeout=5.0,
        signature_timeout=5.0,
        confirm_timeout=0.0,
        poll_interval=0.0,
    )
    values.update(overrides)
    return PipelineConfig(**values)


def make_context(
    chain: FakeChain, capabilities: Optional[ContractCapabilities] = None, **config: Any
) -> StakeContext:
    return StakeContext(
        chain,
        network=EDU_CHAIN_TESTNET,
        contract_address=CONTRACT,
        capabilities=capabilities or chain.capabilities,
        config=fast_config(**config),
        clock=lambda: chain.now,
    )


def weekly(count: int = 4, first: int = NOW) -> list[int]:
    """Unlock times one week apart, the first one at ``first``."""
    return [first + i * 7 * DAY for i in range(count)]


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain()
