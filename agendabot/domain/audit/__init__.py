"""Append-only audit trail shared by every component"""
