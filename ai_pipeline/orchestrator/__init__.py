"""Orchestrator components - workspace, verification, feedback, events and the runner.

Import submodules directly; the agents package depends on workspace types,
so this package must not import the runner eagerly.
"""
