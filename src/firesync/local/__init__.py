"""Local record and collection abstractions.

These hold attribute state and emit change notifications; they have no
knowledge of the remote store.
"""
