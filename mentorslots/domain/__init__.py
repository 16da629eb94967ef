"""
Domain packages: slots, tickets, reservations, problems.

Each package follows the same layout: schemas.py (pydantic), repository.py
(database queries), service.py (business rules and transactions) and
router.py (FastAPI endpoints).
"""
