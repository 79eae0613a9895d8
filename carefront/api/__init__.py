# carefront/api/__init__.py
