"""
Privote - Encrypted vote submission and tally pipeline

Accepts client-encrypted votes, records each one exactly once per
(subject, proposal) pair, submits it to the voting ledger through a
retrying worker pool and triggers homomorphic tally computation once a
proposal closes.

Pipeline guarantees:
- At most one vote record per subject per proposal
- Vote counters reflect confirmed ledger inclusions only
- Permanent ledger rejections are never retried
- Transient failures are retried with exponential backoff
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
