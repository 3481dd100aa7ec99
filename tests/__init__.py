"""
Tests Module
============

Unit and integration tests for the replay simulator.

Test Categories:
- unit/: events, scheduler, ledger, margin, slippage, fill model,
  execution models, adapters, engine, configuration and logging
- integration/: whole replays (determinism, ordering, funding,
  liquidation, limit-order lifecycle)
"""
