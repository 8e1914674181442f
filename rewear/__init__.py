"""
ReWear backend package.

A FastAPI service for a community clothing exchange: users list items,
request swaps, and earn points when a swap completes. Persistence, object
storage and the table change feed sit behind small client abstractions so
the service runs fully in memory for development and tests.
"""
