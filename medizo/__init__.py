"""
Backend package for the Medizo healthcare records API.

Doctors register patients and write prescriptions; patients view and
download them. Persistence goes to a database when one is configured and
falls back to JSON files on disk otherwise.
"""
