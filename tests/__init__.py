"""Test package for the Dual N-Back trainer.

Core tests drive the engine with fake clocks and seeded RNGs; UI smoke tests
run headlessly using pygame's dummy video driver. To run these tests, execute
``pytest`` from the project root.
"""
