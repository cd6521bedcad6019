"""
Meat Ledger - Source Package

Back-office engine for a small meat-retail business: clients with running
credit balances, suppliers, stock, and sale/purchase invoices kept in a
shared remote document store.

DESIGN PRINCIPLES:
1. Every numeric value is sanitized before it is written
2. Invoice numbers come only from the shared counter transaction
3. Closing and deleting invoices are explicit, logged pipelines
4. Deleting an invoice reverses exactly what closing it applied
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Meat Ledger Team"
