"""
finmem Test Suite.

- unit/: tests for the memory tiers, the rules behind them and the
  infrastructure around the engine, all against in-memory backends
"""
