"""
Bookings module.

Availability is unit-based: a listing owns N inventory units and a Confirmed booking
holds its assigned units for [start_date, end_date). Pending bookings are requests and
hold nothing until an admin confirms them.
"""
