"""Conflict detection and resolution for memory updates.

When a new fact is very similar to stored facts, the detector groups the
plausibly-conflicting entries and the resolver decides:
  create     — nothing conflicts
  reject     — the new fact is a duplicate
  replace    — the new fact supersedes the group
  merge      — a synthesized fact supersedes the group
  keep_both  — store alongside; flagged for review when confidence is low
"""
