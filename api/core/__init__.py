"""
Shared, cross-cutting code for the API.

`core/` holds the small building blocks the service is wired from
(settings, logging, DB pool, HTTP middleware). Period-data SQL and request
validation live in `period_data/`.
"""
