"""Live Solana log-stream monitor that surfaces wallets trading on DEX programs."""

__version__ = "0.1.0"
