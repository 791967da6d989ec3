# cartlock/api/__init__.py
