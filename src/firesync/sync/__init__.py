"""Synchronization engine.

Applies remote events to local models and pushes local mutations to the
remote store without letting one direction re-trigger the other.
"""
