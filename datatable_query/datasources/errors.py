"""Driver exception types grouped for callers that run generated SQL."""

import duckdb
import psycopg2

# Errors raised by the drivers when a query is rejected.
DRIVER_ERRORS = (duckdb.Error, psycopg2.Error)
