"""
Persons

Person models, the entity store and the service that couples every
mutation with its outbox event.
"""

from .models import NewPerson, Person, PersonBase, PersonEventName, PersonUpdate
from .store import PERSON_COLUMNS, PersonStore
from .service import PersonService, create_person_service

__all__ = [
    "NewPerson",
    "Person",
    "PersonBase",
    "PersonEventName",
    "PersonUpdate",
    "PERSON_COLUMNS",
    "PersonStore",
    "PersonService",
    "create_person_service",
]
