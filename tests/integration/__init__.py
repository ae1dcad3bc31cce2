# SPDX-License-Identifier: MIT
"""Integration tests for Charter-Sync.

INTEGRATION TEST FILE: This directory contains tests that run several
components together (engine, writer, validator, registry, SQLite cache).
External services are replaced by in-memory fakes.
"""
