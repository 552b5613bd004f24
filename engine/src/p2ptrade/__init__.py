"""
p2ptrade
========

Order lifecycle engine for a peer-to-peer exchange of Lightning sats for
fiat.  The seller's sats are locked in a hold invoice while the buyer pays
fiat off-platform; the invoice is settled when the seller confirms, or
canceled when the order is abandoned, expires or is canceled.

The worker entry point is :mod:`p2ptrade.worker_main`.  Command handlers
live in :class:`p2ptrade.services.OrderService`.
"""

__version__ = "0.1.0"
