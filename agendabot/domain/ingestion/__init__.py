"""
Ingestion domain - webhook receipt, idempotency ledger and dispatch of
normalized commands to the conversation and billing domains.
"""
