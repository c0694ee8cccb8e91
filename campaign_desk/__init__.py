"""
Campaign Desk: backend for the campaign and invoice dashboard.

Campaigns, invoices and line items are browsed through filtered,
cursor-paginated tables, exported to CSV, and corrected with adjustments that
are recorded in an append-only change log.  The HTTP API lives in
``campaign_desk.api`` and the administrative CLI in ``campaign_desk.cli``.
"""

__version__ = "0.1.0"
