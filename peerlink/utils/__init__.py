"""Utilities shared across peerlink modules."""
from __future__ import annotations
