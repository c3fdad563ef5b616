"""
Booking reports: range/period aggregation with timezone-safe calendar dates.
"""
