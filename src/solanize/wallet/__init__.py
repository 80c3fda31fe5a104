"""Solana wallet integration for the Solanize client.

Provides the abstract wallet adapter the auth and transaction layers talk
to, a local keypair-file implementation for terminal use, network
definitions, and a balance tracker refreshed after transactions land.
"""
