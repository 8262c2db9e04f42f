"""Upstream client package.

Structure:
- `adapters/`: protocol-specific `ChatModel` implementations
- `shared/`: reusable normalization, tool and streaming utilities
"""
