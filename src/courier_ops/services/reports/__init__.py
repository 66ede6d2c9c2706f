"""Wallet report exports."""

from .earnings import export_wallet_summaries, report_output_root, wallet_summary

__all__ = ["export_wallet_summaries", "report_output_root", "wallet_summary"]
