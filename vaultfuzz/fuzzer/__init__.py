"""Stateful property-based fuzzing harness for the vault.

Implements sequence-driven invariant testing with:
  - Bounded, precondition-satisfying handlers for every vault entry point
  - Ghost bookkeeping of outstanding withdrawal requests per actor
  - A property oracle evaluated after every step
  - A post-sequence settlement hook for end-of-run checks
  - Delta-debugging minimization of failing sequences
"""
