"""Engagement analytics over activity sessions."""

from analytics.engagement import SUMMARY_COLUMNS, page_time_summary, summary_records

__all__ = ["SUMMARY_COLUMNS", "page_time_summary", "summary_records"]
