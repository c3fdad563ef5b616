"""
Resources module (lodges, event spaces, dining).

- Resource CRUD with schedules and replace-set links to rules/facilities/groups
- Media attached to a resource or a location
- Public browse of published resources
"""
