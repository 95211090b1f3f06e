"""
Fund Performance & Capital Allocation Engine.

Pure computation for private-fund administration: IRR and multiples,
valuation projection, ILPA gross/net methodologies, pro-rata capital call
and distribution allocation, capital account ledgers and report metric
validation.
"""

__version__ = "1.0.0"
