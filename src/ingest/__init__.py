"""Migration pipeline.

This module streams source records, tracks resumable checkpoints,
and coordinates the batch lifecycle against the bulk sink.
"""
