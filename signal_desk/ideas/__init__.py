"""
Daily idea generation.

Modules:
  candidates  — rule-based candidate selection from daily market metrics.
  generator   — candidate pool → raw ideas (Anthropic Messages API or deterministic fallback).
  normalizer  — raw, untrusted ideas → bounded ``CanonicalIdea`` models.
"""
