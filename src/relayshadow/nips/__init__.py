"""Nostr protocol codecs.

Attributes:
    nip01: Wire frames and subscription filters.
    nip90: Data Vending Machine job requests and results, plus the NIP-89
        handler announcement.
"""
