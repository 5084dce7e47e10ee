"""External service clients: ledger RPC, roster export and Telegram alerts."""
