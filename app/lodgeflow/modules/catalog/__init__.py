"""
Catalog module: facilities, house/cancellation rules and guest groups that resources link to.
"""
