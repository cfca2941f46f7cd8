"""Bulk sink layer.

This module applies document batches to the destination index through a
bounded pool of writer threads with retry and partial-success handling.
"""
