"""Service layer for Fleetwire.

Notification ledger, business-data selection queries, notification
workflows (sweeps, immediate sends, pending flush, daily summary), inbound
reply matching and the optional in-process scheduler.
"""
