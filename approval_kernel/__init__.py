"""
Approval Kernel

A configurable, multi-actor approval workflow core for clinic
administration requests, with:
- A deterministic request state machine
- Policy-driven approval chain rules
- Append-only, replayable event history
- Optimistic concurrency per request
- Transactional notification outbox
"""

__version__ = "0.1.0"
