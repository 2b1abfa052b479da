"""Wallets, accumulators, transaction building and topology scheduling."""
