"""
personsvc

Person entity store with a transactional outbox.
"""

__version__ = "0.1.0"
