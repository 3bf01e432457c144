"""
Conversation domain - per-customer persisted state machine that turns chat
messages into registration, booking, reschedule, cancellation and handoff flows.
"""
