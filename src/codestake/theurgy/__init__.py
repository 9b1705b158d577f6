"""
Theurgy - Command implementations for CodeStake.

Each module groups related CLI commands:
- genesis: Create a wallet identity and default configuration
- stake:   create / join / complete (state-changing, via the pipeline)
- divine:  divine / active / summary (reads)
- vault:   Contract balance: balance / deposit / withdraw
- common:  Context setup, outcome and challenge rendering
"""
