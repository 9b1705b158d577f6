"""
Covenant - challenges, milestones and the rules that bind them.

- models:    Challenge / Milestone value types and their invariants
- store:     Challenge Store (cache, fallback, change notifications)
- evaluator: Milestone quiz scoring
"""
