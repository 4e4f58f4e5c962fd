"""Test helpers for the harreplay test suite.

- processes: spawning real child processes wrapped in ProcessHandle
- replay_server: a Python stand-in for the replay server program
"""
