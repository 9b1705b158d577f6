"""
ABI Loader and contract capability descriptor.

The CodeStake ABI ships with the package as a Foundry-style artifact
(pneuma/artifacts/CodeStake.json).  It is turned once, at bind time, into a
``ContractCapabilities`` descriptor: a typed table of the functions and
events the bound contract exposes.  Calls are checked against that table
instead of probing the contract at call time.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_hash.auto import keccak

from .errors import ErrorKind, LedgerError

ARTIFACTS_DIR = Path(__file__).resolve().parent / "artifacts"

# Operations the core cannot work without
REQUIRED_METHODS: tuple[str, ...] = (
    "createChallenge",
    "joinChallenge",
    "completeMilestone",
    "deposit",
    "withdraw",
    "challenges",
    "challengeCounter",
    "getActiveChallenges",
    "getWalletSummary",
    "getChallengeDetails",
    "hasJoined",
)


def _keccak256(data: bytes) -> bytes:
    # NOTE: Keccak-256 != SHA3-256 (NIST). Never use hashlib.sha3_256 here.
    return keccak(data)


def _strip_0x(data: str) -> str:
    return data[2:] if data.startswith("0x") else data


@lru_cache(maxsize=16)
def load_abi(contract_name: str = "CodeStake", artifacts_dir: Path | None = None) -> tuple[dict[str, Any], ...]:
    """
    Load the ABI for a contract from a Foundry-style artifact.

    Args:
        contract_name: Contract name (e.g., "CodeStake")
        artifacts_dir: Directory holding ``<name>.json`` (default: bundled artifacts)

    Returns:
        ABI entries as a tuple of dicts

    Raises:
        FileNotFoundError: If the artifact does not exist
    """
    root = artifacts_dir or ARTIFACTS_DIR
    path = root / f"{contract_name}.json"
    if not path.exists():
        raise FileNotFoundError(f"ABI not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        artifact = json.load(f)

    return tuple(artifact["abi"])


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    input_types: tuple[str, ...]
    output_types: tuple[str, ...]
    mutability: str = "nonpayable"

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.input_types)})"

    @property
    def selector(self) -> bytes:
        return _keccak256(self.signature.encode("utf-8"))[:4]

    @property
    def is_view(self) -> bool:
        return self.mutability in ("view", "pure")

    @property
    def payable(self) -> bool:
        return self.mutability == "payable"

    def encode_call(self, args: Sequence[Any]) -> str:
        """ABI-encode a call to 0x-prefixed hex calldata."""
        if len(args) != len(self.input_types):
            raise LedgerError(
                ErrorKind.INVALID_ARGUMENT,
                f"{self.signature} takes {len(self.input_types)} argument(s), got {len(args)}",
                method=self.name,
            )
        try:
            encoded = encode(list(self.input_types), list(args)) if args else b""
        except (EncodingError, TypeError, ValueError, OverflowError) as exc:
            raise LedgerError(
                ErrorKind.INVALID_ARGUMENT, f"Cannot encode {self.signature}: {exc}", method=self.name
            ) from exc
        return "0x" + self.selector.hex() + encoded.hex()

    def decode_args(self, calldata: str) -> tuple[Any, ...]:
        raw = bytes.fromhex(_strip_0x(calldata))
        return tuple(decode(list(self.input_types), raw[4:])) if self.input_types else ()

    def decode_result(self, data: Any) -> tuple[Any, ...]:
        """
        ABI-decode return data.

        Raises:
            LedgerError: kind MalformedResponse for empty, truncated or
                otherwise undecodable data
        """
        if not self.output_types:
            return ()
        if not isinstance(data, str) or _strip_0x(data) == "":
            raise LedgerError(
                ErrorKind.MALFORMED_RESPONSE, f"{self.name} returned no data", method=self.name
            )
        try:
            raw = bytes.fromhex(_strip_0x(data))
            return tuple(decode(list(self.output_types), raw))
        except (DecodingError, ValueError, TypeError, OverflowError) as exc:
            raise LedgerError(
                ErrorKind.MALFORMED_RESPONSE, f"{self.name} returned undecodable data: {exc}", method=self.name
            ) from exc

    def encode_result(self, values: Sequence[Any]) -> str:
        return "0x" + encode(list(self.output_types), list(values)).hex()


@dataclass(frozen=True)
class EventSpec:
    name: str
    inputs: tuple[tuple[str, str, bool], ...]  # (name, type, indexed)

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(t for _, t, _ in self.inputs)})"

    @property
    def topic(self) -> str:
        return "0x" + _keccak256(self.signature.encode("utf-8")).hex()

    def matches(self, log: Mapping[str, Any]) -> bool:
        topics = log.get("topics") or []
        return bool(topics) and str(topics[0]).lower() == self.topic

    def decode_log(self, log: Mapping[str, Any]) -> dict[str, Any]:
        """Decode indexed topics and the data field of a matching log."""
        topics = list(log.get("topics") or [])[1:]
        indexed = [(n, t) for n, t, i in self.inputs if i]
        plain = [(n, t) for n, t, i in self.inputs if not i]
        if len(topics) < len(indexed):
            raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"{self.name} log is missing topics")
        try:
            result: dict[str, Any] = {}
            for (name, typ), topic in zip(indexed, topics):
                result[name] = decode([typ], bytes.fromhex(_strip_0x(topic)))[0]
            if plain:
                values = decode([t for _, t in plain], bytes.fromhex(_strip_0x(log.get("data") or "0x")))
                result.update({name: value for (name, _), value in zip(plain, values)})
        except (DecodingError, ValueError, TypeError) as exc:
            raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Cannot decode {self.name} log: {exc}") from exc
        return result

    def encode_log(self, values: Mapping[str, Any]) -> dict[str, Any]:
        topics = [self.topic]
        for name, typ, indexed in self.inputs:
            if indexed:
                topics.append("0x" + encode([typ], [values[name]]).hex())
        plain = [(n, t) for n, t, i in self.inputs if not i]
        data = encode([t for _, t in plain], [values[n] for n, _ in plain]) if plain else b""
        return {"topics": topics, "data": "0x" + data.hex()}


@dataclass(frozen=True)
class ContractCapabilities:
    """What the bound contract can do, built once from its ABI."""

    functions: Mapping[str, FunctionSpec]
    events: Mapping[str, EventSpec] = field(default_factory=dict)

    @classmethod
    def from_abi(cls, abi: Iterable[Mapping[str, Any]]) -> "ContractCapabilities":
        functions: dict[str, FunctionSpec] = {}
        events: dict[str, EventSpec] = {}
        for entry in abi:
            kind = entry.get("type")
            if kind == "function":
                functions[entry["name"]] = FunctionSpec(
                    name=entry["name"],
                    input_types=tuple(inp["type"] for inp in entry.get("inputs", [])),
                    output_types=tuple(out["type"] for out in entry.get("outputs", [])),
                    mutability=entry.get("stateMutability", "nonpayable"),
                )
            elif kind == "event":
                events[entry["name"]] = EventSpec(
                    name=entry["name"],
                    inputs=tuple(
                        (inp.get("name", ""), inp["type"], bool(inp.get("indexed")))
                        for inp in entry.get("inputs", [])
                    ),
                )
        return cls(functions=functions, events=events)

    @classmethod
    def default(cls) -> "ContractCapabilities":
        return cls.from_abi(load_abi("CodeStake"))

    def has(self, method: str) -> bool:
        return method in self.functions

    def require(self, method: str) -> FunctionSpec:
        spec = self.functions.get(method)
        if spec is None:
            raise LedgerError(
                ErrorKind.METHOD_UNAVAILABLE,
                f"Function {method} is not available on the bound contract",
                method=method,
            )
        return spec

    def missing(self, methods: Iterable[str] = REQUIRED_METHODS) -> list[str]:
        return [m for m in methods if m not in self.functions]

    def without(self, *methods: str) -> "ContractCapabilities":
        """A copy of this descriptor lacking the given functions."""
        return ContractCapabilities(
            functions={k: v for k, v in self.functions.items() if k not in methods},
            events=self.events,
        )

    def by_selector(self, calldata: str) -> FunctionSpec | None:
        selector = _strip_0x(calldata)[:8]
        for spec in self.functions.values():
            if spec.selector.hex() == selector:
                return spec
        return None
