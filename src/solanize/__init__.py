"""Solanize - converse with an AI agent that proposes Solana wallet operations.

The package is the session, authentication and transaction orchestration
layer: wallet challenge-response login, a chat store reconciling optimistic
and confirmed messages, and the lifecycle of agent-proposed actions and
prepared transactions.
"""

__version__ = "0.1.0"
