"""Domain layer for the Privote pipeline.

Holds the vote, job and proposal models, the error taxonomy and pure
domain services (ledger revert classification). Nothing in this package
performs I/O.
"""
