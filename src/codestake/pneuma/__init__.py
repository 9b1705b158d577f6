"""
Pneuma - On-chain interaction layer for CodeStake.

Provides the JSON-RPC client, ABI capability descriptor, network guard,
ledger client and transaction pipeline for the CodeStake contract on
EDU Chain.

Uses httpx + eth-account + eth-abi instead of the heavyweight web3.py.
"""
