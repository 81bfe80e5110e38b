"""
Core types for token set construction.
"""

type TokenId = int
type Symbol = int
type Pair = tuple[TokenId, TokenId]
type Position = int
