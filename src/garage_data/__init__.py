"""
garage_data
Parking garage state: in-process memory store, relational persistence and
the migration / backup / rollback engine between them
"""

__version__ = "1.0.0"
