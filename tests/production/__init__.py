"""
End-to-end scenarios for the conditional upload limbo reproduction.

Covers:
- The ordered reproduction steps against a shared store
- State transitions of the destination blob
- Runs against live Azure or S3 backends when configured
"""
