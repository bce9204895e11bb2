"""
FinTrack Core - Budget Consistency Package

The client-side data-consistency and budget-rule-evaluation core of a
personal finance tracker (wallets, transactions, budgets).

DESIGN PRINCIPLES:
1. Cached reads always say how fresh they are
2. Every mutation invalidates locally and tells the other tabs
3. Hard limits always win over soft limits
4. One alert per threshold crossing, never a flood
5. Stores are built once per session and injected, never global
"""

__version__ = "1.0.0"
__author__ = "FinTrack Team"
